"""Single-flight coordination: at most one synchronization run at a time."""

import threading
from enum import Enum

from .logger import setup_logging

logger = setup_logging()


class GuardResult(Enum):
    STARTED = 'started'
    ALREADY_RUNNING = 'already_running'


class SyncGuard:
    """Non-queuing run lock. A second trigger is turned away, never delayed."""

    def __init__(self):
        self._lock = threading.Lock()
        self.active_run = None

    def try_start(self) -> GuardResult:
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already running, ignoring trigger")
            return GuardResult.ALREADY_RUNNING
        return GuardResult.STARTED

    def release(self):
        self.active_run = None
        if self._lock.locked():
            self._lock.release()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()
