# -*- coding: utf-8 -*-
"""
Aluno Online integration entry points.

This module wires the synchronization components together and exposes the
trigger the HTTP layer calls: it starts a run in a background thread behind
the single-flight guard and returns an acknowledgment right away. Outcomes
are reported through the run summary and the log, never to the caller.
"""

import threading
from dataclasses import dataclass
from typing import Optional

from ..scrapers.requests_scraper.fetch_data import PortalFetcher
from ..scrapers.requests_scraper.session import SessionAuthenticator
from .config import SyncSettings
from .logger import setup_logging
from .models import SyncRun
from .reconciler import Reconciler
from .sync_guard import GuardResult, SyncGuard
from .sync_orchestrator import SyncOrchestrator

logger = setup_logging()


@dataclass(frozen=True)
class TriggerAck:
    """What the trigger caller gets back: an acknowledgment, not a result."""
    accepted: bool
    status: str
    message: str
    run_id: Optional[str] = None


class SyncService:
    """Owns the guard and the background thread of the current run."""

    def __init__(self, credentials, store, settings: SyncSettings, guard: Optional[SyncGuard] = None):
        self.credentials = credentials
        self.store = store
        self.settings = settings
        self.guard = guard or SyncGuard()
        self.last_run = None
        self._orchestrator = None
        self._thread = None

    def build_orchestrator(self) -> SyncOrchestrator:
        authenticator = SessionAuthenticator(
            self.settings.portal_base_url,
            timeout=self.settings.request_timeout,
            session_ttl_minutes=self.settings.session_ttl_minutes,
        )
        fetcher = PortalFetcher(
            self.settings.portal_base_url,
            timeout=self.settings.request_timeout,
            max_retries=self.settings.max_retries,
            retry_backoff=self.settings.retry_backoff,
        )
        reconciler = Reconciler(self.store, persistence_retries=self.settings.persistence_retries)
        return SyncOrchestrator(authenticator, fetcher, reconciler, max_workers=self.settings.max_workers)

    def _execute(self, orchestrator, run):
        try:
            orchestrator.run(self.credentials, run)
        finally:
            self.last_run = run
            self._orchestrator = None
            self.guard.release()

    def _claim(self):
        if self.guard.try_start() is GuardResult.ALREADY_RUNNING:
            return None, None
        try:
            orchestrator = self.build_orchestrator()
        except Exception:
            self.guard.release()
            raise
        run = SyncRun()
        self.guard.active_run = run
        self._orchestrator = orchestrator
        return orchestrator, run

    def trigger(self) -> TriggerAck:
        """Start a run in the background unless one is already active."""
        orchestrator, run = self._claim()
        if orchestrator is None:
            active = self.guard.active_run
            return TriggerAck(
                accepted=False,
                status=GuardResult.ALREADY_RUNNING.value,
                message='A discipline sync is already running.',
                run_id=active.run_id if active else None,
            )

        thread = threading.Thread(
            target=self._execute,
            args=(orchestrator, run),
            name=f"sync-run-{run.run_id[:8]}",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._orchestrator = None
            self.guard.release()
            raise

        # Kept only so shutdown() can wait for it
        self._thread = thread
        logger.info(f"Sync run {run.run_id} started in background")
        return TriggerAck(
            accepted=True,
            status=GuardResult.STARTED.value,
            message='Discipline scraping process started.',
            run_id=run.run_id,
        )

    def run_now(self) -> Optional[SyncRun]:
        """Run in the calling thread; returns None if another run is active."""
        orchestrator, run = self._claim()
        if orchestrator is None:
            return None
        self._execute(orchestrator, run)
        return run

    def cancel(self):
        orchestrator = self._orchestrator
        if orchestrator is not None:
            orchestrator.cancel()

    def shutdown(self, timeout: Optional[float] = None):
        """Cancel the active run cooperatively and wait for its thread."""
        self.cancel()
        thread = self._thread
        if thread is not None and thread.is_alive():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Sync thread still running after shutdown timeout")


# Singleton pattern
_service = None


def get_sync_service(credentials, store, settings: SyncSettings) -> SyncService:
    """
    Get the process-wide sync service, creating it on first call.

    Args:
        credentials: CredentialConfig (only used on first call)
        store: CatalogDatabase (only used on first call)
        settings: SyncSettings (only used on first call)
    """
    global _service
    if _service is None:
        _service = SyncService(credentials, store, settings)
    return _service


def reset_sync_service():
    """Reset the singleton instance (useful for testing)."""
    global _service
    _service = None


def trigger_discipline_sync(credentials, store, settings: SyncSettings) -> TriggerAck:
    """
    Start a discipline sync in the background and acknowledge immediately.

    Args:
        credentials: CredentialConfig from process configuration
        store: CatalogDatabase the run writes into
        settings: SyncSettings for the run

    Returns:
        TriggerAck: accepted=False with status 'already_running' when a run is active
    """
    return get_sync_service(credentials, store, settings).trigger()
