"""
Merging portal snapshots into the persisted catalog.

Classes are matched by number. Portal fields always win, except the WhatsApp
group link, which only the external write path may set: it is carried over
from the stored class, and it disappears only together with a class the
portal no longer lists.
"""

import sqlite3
import time
from typing import Iterable, List, Optional, Union

from .exceptions import PersistenceError
from .logger import setup_logging
from .models import (
    ClassRecord,
    DisciplineFailure,
    DisciplineOutcome,
    DisciplineRecord,
    OutcomeStatus,
)

logger = setup_logging()


def merge_discipline(existing: Optional[DisciplineRecord], incoming: DisciplineRecord) -> DisciplineRecord:
    """
    Build the record to store from the stored one and a freshly parsed one.

    Args:
        existing: Stored record, or None for a new discipline
        incoming: Record parsed from the portal (no WhatsApp links)

    Returns:
        DisciplineRecord: Portal data in portal order, with stored links kept
    """
    stored_links = {}
    if existing is not None:
        stored_links = {c.number: c.whatsapp_group for c in existing.classes}

    classes = [
        ClassRecord(
            number=c.number,
            schedule=c.schedule,
            professor=c.professor,
            vacancies=c.vacancies,
            whatsapp_group=stored_links.get(c.number),
        )
        for c in incoming.classes
    ]

    return DisciplineRecord(
        discipline_id=incoming.discipline_id,
        name=incoming.name,
        classes=classes,
        archived=False,
    )


class Reconciler:
    """Applies per-discipline results of a run to the catalog store."""

    def __init__(self, store, persistence_retries=3, retry_backoff=0.5, sleep=time.sleep):
        self.store = store
        self.persistence_retries = persistence_retries
        self.retry_backoff = retry_backoff
        self._sleep = sleep

    def reconcile(self, discipline_id: str,
                  incoming: Union[DisciplineRecord, DisciplineFailure]) -> DisciplineOutcome:
        """
        Apply one discipline's result.

        Args:
            discipline_id: Discipline being reconciled
            incoming: Parsed record, or the failure that prevented parsing it

        Returns:
            DisciplineOutcome: succeeded, unchanged or failed
        """
        if isinstance(incoming, DisciplineFailure):
            logger.warning(f"Discipline {discipline_id} left untouched: {incoming.kind} - {incoming.message}")
            return DisciplineOutcome(
                discipline_id=discipline_id,
                status=OutcomeStatus.FAILED,
                failure_kind=incoming.kind,
                message=incoming.message,
            )

        if incoming.discipline_id != discipline_id:
            raise ValueError(f"Record for {incoming.discipline_id} passed as {discipline_id}")

        try:
            changed = self._apply_with_retry(incoming)
        except PersistenceError as e:
            logger.error(f"Could not store discipline {discipline_id}: {e}")
            return DisciplineOutcome(
                discipline_id=discipline_id,
                status=OutcomeStatus.FAILED,
                failure_kind=PersistenceError.kind,
                message=str(e),
            )

        status = OutcomeStatus.SUCCEEDED if changed else OutcomeStatus.UNCHANGED
        logger.debug(f"Discipline {discipline_id} {status} ({len(incoming.classes)} classes)")
        return DisciplineOutcome(discipline_id=discipline_id, status=status)

    def _apply_with_retry(self, incoming: DisciplineRecord) -> bool:
        def merge(existing):
            merged = merge_discipline(existing, incoming)
            return None if merged == existing else merged

        last_error = None
        for attempt in range(self.persistence_retries + 1):
            try:
                _, written = self.store.apply_discipline(incoming.discipline_id, merge)
                return written is not None
            except sqlite3.OperationalError as e:
                last_error = e
                if attempt < self.persistence_retries:
                    delay = self.retry_backoff * (2 ** attempt)
                    logger.warning(
                        f"Write for {incoming.discipline_id} failed ({e}), retrying in {delay:.1f}s"
                    )
                    self._sleep(delay)

        raise PersistenceError(
            f"Gave up after {self.persistence_retries + 1} attempts: {last_error}"
        ) from last_error

    def finalize_run(self, enumeration_complete: bool, discipline_ids_seen: Iterable[str]) -> List[str]:
        """
        Archive catalog disciplines the portal no longer lists.

        Only a fully successful enumeration may archive anything; otherwise
        this is a no-op.

        Returns:
            list: Archived discipline ids
        """
        if not enumeration_complete:
            logger.info("Enumeration incomplete, skipping stale discipline check")
            return []

        seen = set(discipline_ids_seen)
        stale = sorted(self.store.get_active_discipline_ids() - seen)

        archived = []
        for discipline_id in stale:
            if self.store.archive_discipline(discipline_id):
                archived.append(discipline_id)
                logger.info(f"Archived discipline {discipline_id}: no longer offered on the portal")
        return archived
