"""
Aluno Online session handling.

SessionAuthenticator performs the form login; PortalSession wraps the
authenticated requests.Session and renews it when the portal reports it as
expired. Renewal is collapsed across worker threads: every worker that saw the
same expired generation waits for a single re-authentication.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urljoin

import requests

from ...core.credentials import CredentialConfig
from ...core.exceptions import AuthError, ParseError
from ...core.logger import setup_logging
from .html_parser import extract_login_error, extract_login_form, is_login_page

logger = setup_logging()

LOGIN_PATH = '/requisicaoaluno/'

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
    "Upgrade-Insecure-Requests": "1",
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
}


def _utcnow():
    return datetime.now(timezone.utc)


class PortalSession:
    """An authenticated portal session owned by exactly one sync run."""

    def __init__(self, http, credentials, authenticator, ttl):
        self.http = http
        self.credentials = credentials
        self.generation = 0
        self.authenticated_at = None
        self.expires_at = None
        self._authenticator = authenticator
        self._ttl = ttl
        self._lock = threading.Lock()
        self._renewed_without_success = False

    def _stamp(self):
        self.authenticated_at = _utcnow()
        self.expires_at = self.authenticated_at + self._ttl

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return True
        return (now or _utcnow()) >= self.expires_at

    def ensure_fresh(self):
        """Renew ahead of time when the session outlived its expected lifetime."""
        generation = self.generation
        if self.is_expired():
            logger.info("Session reached its expected lifetime, renewing")
            self.renew(generation, rejected=False)

    def mark_success(self, generation):
        """Called after an authenticated request the portal accepted with `generation`."""
        with self._lock:
            if generation == self.generation:
                self._renewed_without_success = False

    def renew(self, observed_generation, rejected=True):
        """
        Re-authenticate once for every worker that saw `observed_generation` expire.

        Args:
            observed_generation: Generation the caller found expired
            rejected: False for a renewal due to the session lifetime, where
                the portal has not turned anything down

        Raises:
            AuthError: If login fails, or the portal rejects the session again
                before a single request succeeded with the previous renewal
        """
        with self._lock:
            if self.generation != observed_generation:
                # Another worker already renewed
                return

            if rejected and self._renewed_without_success:
                raise AuthError(
                    AuthError.SESSION_REJECTED,
                    "Portal rejected the session again right after re-authentication"
                )

            logger.warning(f"Session generation {observed_generation} expired, re-authenticating")
            self.http.cookies.clear()
            self._authenticator.login(self.http, self.credentials)
            self.generation += 1
            self._stamp()
            self._renewed_without_success = rejected

    def close(self):
        self.http.close()


class SessionAuthenticator:
    """Performs the login handshake against Aluno Online."""

    def __init__(self, base_url, timeout=15.0, session_ttl_minutes=20, session_factory=requests.Session):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.ttl = timedelta(minutes=session_ttl_minutes)
        self.session_factory = session_factory

    @property
    def login_url(self):
        return self.base_url + LOGIN_PATH

    def authenticate(self, credentials: CredentialConfig) -> PortalSession:
        """
        Log in and return an authenticated session.

        Args:
            credentials: Institutional credentials

        Returns:
            PortalSession: Session ready for crawling

        Raises:
            AuthError: invalid_credentials, portal_unavailable or unexpected_response_shape
        """
        http = self.session_factory()
        http.headers.update(DEFAULT_HEADERS)

        try:
            self.login(http, credentials)
        except AuthError:
            http.close()
            raise

        session = PortalSession(http, credentials, self, self.ttl)
        session._stamp()
        logger.info(f"Authenticated on Aluno Online as {credentials.matricula}")
        return session

    def _request(self, method, http, url, **kwargs):
        try:
            response = http.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise AuthError(AuthError.PORTAL_UNAVAILABLE, f"Portal unreachable: {e}") from e

        if response.status_code >= 500:
            raise AuthError(AuthError.PORTAL_UNAVAILABLE, f"Portal answered HTTP {response.status_code}")
        if response.status_code != 200:
            raise AuthError(
                AuthError.UNEXPECTED_RESPONSE_SHAPE,
                f"Unexpected HTTP {response.status_code} from {url}"
            )
        return response

    def login(self, http, credentials: CredentialConfig):
        """Run the form login on an existing requests.Session."""
        login_page = self._request('GET', http, self.login_url)

        try:
            action, fields = extract_login_form(login_page.text)
        except ParseError as e:
            raise AuthError(AuthError.UNEXPECTED_RESPONSE_SHAPE, str(e)) from e

        payload = dict(fields)
        payload['matricula'] = credentials.matricula
        payload['senha'] = credentials.senha

        result = self._request('POST', http, urljoin(self.login_url, action), data=payload)

        if is_login_page(result.text):
            message = extract_login_error(result.text) or "Login form shown again after submitting credentials"
            raise AuthError(AuthError.INVALID_CREDENTIALS, message)
