"""
Data model for the discipline catalog and synchronization runs.

Dataclasses representing catalog entities, portal references and the
transient per-run bookkeeping.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional


def parse_class_number(value) -> Optional[int]:
    """
    Read a class number given as int or text.

    Only the canonical decimal form matches, so "01" is not class 1.
    Returns None for anything else.
    """
    text = str(value).strip()
    if not text.isdecimal() or str(int(text)) != text:
        return None
    return int(text)


@dataclass
class ClassRecord:
    """A class offering (turma) of a discipline."""
    number: int
    schedule: str = ''
    professor: str = ''
    vacancies: int = 0
    whatsapp_group: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'number': self.number,
            'schedule': self.schedule,
            'professor': self.professor,
            'vacancies': self.vacancies,
            'whatsappGroup': self.whatsapp_group,
        }


@dataclass
class DisciplineRecord:
    """A discipline and its ordered class offerings."""
    discipline_id: str
    name: str
    classes: List[ClassRecord] = field(default_factory=list)
    archived: bool = False

    def get_class(self, number) -> Optional[ClassRecord]:
        """Find a class by number; path parameters arrive as strings."""
        wanted = parse_class_number(number)
        if wanted is None:
            return None
        for class_record in self.classes:
            if class_record.number == wanted:
                return class_record
        return None

    def class_numbers(self) -> List[int]:
        return [c.number for c in self.classes]

    def to_dict(self) -> Dict:
        return {
            'disciplineId': self.discipline_id,
            'name': self.name,
            'archived': self.archived,
            'classes': [c.to_dict() for c in self.classes],
        }


@dataclass(frozen=True)
class DisciplineRef:
    """A discipline as listed by the portal, before its class page is fetched."""
    discipline_id: str
    name: str
    url: str


@dataclass(frozen=True)
class DisciplineFailure:
    """Why a discipline could not be fetched or parsed during a run."""
    discipline_id: str
    kind: str
    message: str = ''


class OutcomeStatus:
    SUCCEEDED = 'succeeded'
    UNCHANGED = 'unchanged'
    FAILED = 'failed'
    SKIPPED = 'skipped'


@dataclass(frozen=True)
class DisciplineOutcome:
    """Result of processing one discipline within a run."""
    discipline_id: str
    status: str
    failure_kind: Optional[str] = None
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.SUCCEEDED, OutcomeStatus.UNCHANGED)


class RunStatus:
    ACTIVE = 'active'
    COMPLETED = 'completed'
    PARTIAL = 'partial'
    FAILED = 'failed'
    CANCELLED = 'cancelled'


def _utcnow():
    return datetime.now(timezone.utc)


@dataclass
class SyncRun:
    """One end-to-end execution of the synchronization engine."""
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    status: str = RunStatus.ACTIVE
    outcomes: Dict[str, DisciplineOutcome] = field(default_factory=dict)
    enumeration_complete: bool = False
    archived: List[str] = field(default_factory=list)
    error: Optional[str] = None

    def record(self, outcome: DisciplineOutcome):
        self.outcomes[outcome.discipline_id] = outcome

    def finish(self, status: str, error: Optional[str] = None):
        self.status = status
        self.finished_at = _utcnow()
        if error:
            self.error = error

    @property
    def is_active(self) -> bool:
        return self.status == RunStatus.ACTIVE

    @property
    def failures(self) -> List[DisciplineOutcome]:
        return [o for o in self.outcomes.values() if o.status == OutcomeStatus.FAILED]

    def counts(self) -> Dict[str, int]:
        counts = {
            OutcomeStatus.SUCCEEDED: 0,
            OutcomeStatus.UNCHANGED: 0,
            OutcomeStatus.FAILED: 0,
            OutcomeStatus.SKIPPED: 0,
        }
        for outcome in self.outcomes.values():
            counts[outcome.status] += 1
        return counts

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or _utcnow()
        return (end - self.started_at).total_seconds()

    def summary(self) -> str:
        counts = self.counts()
        text = (
            f"Sync run {self.run_id} {self.status} in {self.duration_seconds:.1f}s: "
            f"{counts[OutcomeStatus.SUCCEEDED]} updated, {counts[OutcomeStatus.UNCHANGED]} unchanged, "
            f"{counts[OutcomeStatus.FAILED]} failed, {counts[OutcomeStatus.SKIPPED]} skipped, "
            f"{len(self.archived)} archived"
        )
        if self.error:
            text += f" ({self.error})"
        return text


@dataclass
class StudentProgress:
    """Read-only view of a student's discipline history."""
    student_id: str
    completed_disciplines: List[str] = field(default_factory=list)
    current_disciplines: List[str] = field(default_factory=list)
