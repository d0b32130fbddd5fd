"""
Error taxonomy for the synchronization engine.

AuthError is fatal to a run. FetchError, ParseError and PersistenceError are
scoped to a single discipline and end up in the run summary.
"""


class SyncError(Exception):
    """Base class for every error raised by the synchronization engine."""

    kind = 'unexpected'


class AuthError(SyncError):
    """Login against the portal failed. Always fatal to the whole run."""

    INVALID_CREDENTIALS = 'invalid_credentials'
    PORTAL_UNAVAILABLE = 'portal_unavailable'
    UNEXPECTED_RESPONSE_SHAPE = 'unexpected_response_shape'
    # The portal kept rejecting a freshly renewed session
    SESSION_REJECTED = 'session_rejected'

    kind = 'auth'

    def __init__(self, reason, message=''):
        self.reason = reason
        super().__init__(message or reason)


class SessionExpiredError(SyncError):
    """The portal rejected a request as unauthenticated."""

    kind = 'session_expired'

    def __init__(self, message, generation=None):
        # Session generation the rejected request was made with
        self.generation = generation
        super().__init__(message)


class FetchError(SyncError):
    """A page could not be retrieved."""

    kind = 'fetch'

    def __init__(self, message, url=None, status_code=None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class NetworkError(FetchError):
    """Transient failure that survived the whole retry budget."""

    kind = 'network'


class ResourceNotFoundError(FetchError):
    """Permanent failure (missing or invalid resource); never retried."""

    kind = 'not_found'


class ParseError(SyncError):
    """The page does not have the expected structure (portal schema drift)."""

    kind = 'parse'


class PersistenceError(SyncError):
    """The catalog store could not apply a write."""

    kind = 'persistence'
