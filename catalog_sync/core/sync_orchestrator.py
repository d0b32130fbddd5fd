"""
Synchronization run driver.

Authenticates once, enumerates every discipline, then fetches, parses and
reconciles each one on a bounded thread pool. Discipline-level failures are
collected into the SyncRun; an AuthError stops the run. Archiving stale
disciplines only happens after a run that attempted everything it listed.
"""

import concurrent.futures
import sqlite3
import threading
from typing import List, Optional

from ..scrapers.requests_scraper.html_parser import parse_class_page
from .exceptions import AuthError, FetchError, ParseError
from .logger import setup_logging
from .models import (
    DisciplineFailure,
    DisciplineOutcome,
    DisciplineRef,
    OutcomeStatus,
    RunStatus,
    SyncRun,
)

logger = setup_logging()


class SyncOrchestrator:
    """Drives one synchronization run at a time; create a new one per run."""

    def __init__(self, authenticator, fetcher, reconciler, max_workers=4, parser=parse_class_page):
        self.authenticator = authenticator
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.max_workers = max_workers
        self.parser = parser
        self._stop = threading.Event()
        self._fatal_error = None

    def cancel(self):
        """Stop dispatching disciplines; in-flight ones finish their write."""
        if not self._stop.is_set():
            logger.warning("Cancellation requested, finishing in-flight disciplines")
        self._stop.set()

    @property
    def cancelled(self) -> bool:
        return self._stop.is_set() and self._fatal_error is None

    def run(self, credentials, run: Optional[SyncRun] = None) -> SyncRun:
        """
        Execute a full synchronization run. Never raises: every outcome,
        including fatal ones, ends up in the returned SyncRun.

        Args:
            credentials: CredentialConfig for the portal
            run: Pre-created SyncRun to fill (lets callers expose it while active)

        Returns:
            SyncRun: The finished run summary
        """
        run = run or SyncRun()
        logger.info(f"Starting sync run {run.run_id}")
        session = None

        try:
            try:
                session = self.authenticator.authenticate(credentials)
            except AuthError as e:
                run.finish(RunStatus.FAILED, f"Authentication failed ({e.reason}): {e}")
                return run

            refs = self._enumerate(session, run)
            if refs is None:
                return run

            self._process_all(session, refs, run)
            self._complete(refs, run)
        except Exception as e:
            logger.exception(f"Sync run {run.run_id} crashed")
            run.finish(RunStatus.FAILED, f"Unexpected error: {e}")
        finally:
            if session is not None:
                session.close()
            self._report(run)

        return run

    def _enumerate(self, session, run) -> Optional[List[DisciplineRef]]:
        try:
            return self.fetcher.list_disciplines(session)
        except AuthError as e:
            run.finish(RunStatus.FAILED, f"Authentication lost while listing ({e.reason}): {e}")
        except (FetchError, ParseError) as e:
            run.finish(RunStatus.FAILED, f"Could not enumerate disciplines ({e.kind}): {e}")
        return None

    def _process_discipline(self, session, ref: DisciplineRef) -> DisciplineOutcome:
        if self._stop.is_set():
            return DisciplineOutcome(discipline_id=ref.discipline_id, status=OutcomeStatus.SKIPPED)

        try:
            raw = self.fetcher.fetch_class_page(session, ref)
            incoming = self.parser(raw, ref)
        except (FetchError, ParseError) as e:
            incoming = DisciplineFailure(discipline_id=ref.discipline_id, kind=e.kind, message=str(e))

        return self.reconciler.reconcile(ref.discipline_id, incoming)

    def _process_all(self, session, refs: List[DisciplineRef], run: SyncRun):
        total = len(refs)

        with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers,
                                                   thread_name_prefix='discipline-sync') as executor:
            future_to_ref = {
                executor.submit(self._process_discipline, session, ref): ref
                for ref in refs
            }

            for position, future in enumerate(concurrent.futures.as_completed(future_to_ref), start=1):
                ref = future_to_ref[future]
                try:
                    outcome = future.result()
                except AuthError as e:
                    if self._fatal_error is None:
                        logger.error(f"Authentication lost at {ref.discipline_id}, aborting run: {e}")
                        self._fatal_error = e
                    self._stop.set()
                    outcome = DisciplineOutcome(
                        discipline_id=ref.discipline_id,
                        status=OutcomeStatus.FAILED,
                        failure_kind=AuthError.kind,
                        message=str(e),
                    )
                except Exception as e:
                    logger.exception(f"Unexpected error while processing {ref.discipline_id}")
                    outcome = DisciplineOutcome(
                        discipline_id=ref.discipline_id,
                        status=OutcomeStatus.FAILED,
                        failure_kind='unexpected',
                        message=str(e),
                    )

                run.record(outcome)
                logger.info(f"[{position}/{total}] {ref.discipline_id}: {outcome.status}")

    def _complete(self, refs: List[DisciplineRef], run: SyncRun):
        counts = run.counts()
        attempted_all = (
            len(run.outcomes) == len(refs) and counts[OutcomeStatus.SKIPPED] == 0
        )

        if self._fatal_error is not None:
            run.finish(RunStatus.FAILED, f"Run aborted: {self._fatal_error}")
            return
        if self._stop.is_set():
            run.finish(RunStatus.CANCELLED)
            return

        run.enumeration_complete = attempted_all
        error = None
        try:
            run.archived = self.reconciler.finalize_run(
                run.enumeration_complete,
                [ref.discipline_id for ref in refs],
            )
        except sqlite3.Error as e:
            logger.error(f"Could not archive stale disciplines: {e}")
            error = f"Stale discipline check failed: {e}"

        if run.failures or error or not attempted_all:
            run.finish(RunStatus.PARTIAL, error)
        else:
            run.finish(RunStatus.COMPLETED)

    def _report(self, run: SyncRun):
        if run.is_active:
            run.finish(RunStatus.FAILED, "Run ended without a status")

        log = logger.info if run.status == RunStatus.COMPLETED else logger.warning
        log(run.summary())
        for failure in run.failures:
            logger.warning(f"  {failure.discipline_id}: {failure.failure_kind} - {failure.message}")

        try:
            self.reconciler.store.record_sync_run(run)
        except sqlite3.Error as e:
            logger.error(f"Could not store summary of run {run.run_id}: {e}")
