"""Per-student status overlay over the discipline catalog (read-only)."""

from typing import Dict, Iterable, List

from .models import DisciplineRecord, StudentProgress

COMPLETED = 'completed'
IN_PROGRESS = 'in_progress'
NOT_TAKEN = 'not_taken'


def discipline_status(student: StudentProgress, discipline_id: str) -> str:
    """Completed wins over in progress; anything else is not taken."""
    if discipline_id in student.completed_disciplines:
        return COMPLETED
    if discipline_id in student.current_disciplines:
        return IN_PROGRESS
    return NOT_TAKEN


def discipline_with_status(student: StudentProgress, discipline: DisciplineRecord) -> Dict:
    data = discipline.to_dict()
    data['status'] = discipline_status(student, discipline.discipline_id)
    return data


def disciplines_with_status(student: StudentProgress, disciplines: Iterable[DisciplineRecord]) -> List[Dict]:
    return [discipline_with_status(student, d) for d in disciplines]
