"""
Activity reconciliation.

Teaching pay follows activity, not formal assignment: the authoritative
"was taught" signal is the earliest activity event a teacher produced for a
student on a date. A substitute teacher therefore earns for exactly the days
they taught.
"""
from collections import defaultdict
from datetime import date, datetime, time
from typing import Dict, Iterable, List

from sqlalchemy.orm import Session

from models import TeachingActivityEvent
from services.exceptions import data_access
from utils.periods import is_sunday, iter_dates


def working_days(from_date: date, to_date: date, include_sundays: bool) -> int:
    """Count calendar days in [from_date, to_date], skipping Sundays unless included."""
    return sum(
        1 for d in iter_dates(from_date, to_date)
        if include_sundays or not is_sunday(d)
    )


def reconcile_teaching_days(
    events: Iterable[TeachingActivityEvent],
    include_sundays: bool,
) -> Dict[int, Dict[date, datetime]]:
    """
    Collapse raw activity events into teaching dates per student.

    Returns:
        {student_id: {teaching_date: earliest_timestamp}}, students and dates
        in ascending order so the output is deterministic for equal inputs.
    """
    earliest: Dict[int, Dict[date, datetime]] = defaultdict(dict)

    for event in events:
        if event.sent_at is None:
            continue
        day = event.sent_at.date()
        if not include_sundays and is_sunday(day):
            continue
        per_student = earliest[event.student_id]
        current = per_student.get(day)
        if current is None or event.sent_at < current:
            per_student[day] = event.sent_at

    return {
        student_id: dict(sorted(days.items()))
        for student_id, days in sorted(earliest.items())
    }


def load_activity_events(
    db: Session, teacher_id: int, from_date: date, to_date: date
) -> List[TeachingActivityEvent]:
    """Fetch a teacher's activity events for the closed window [from_date, to_date]."""
    window_start = datetime.combine(from_date, time.min)
    window_end = datetime.combine(to_date, time.max)
    with data_access("load activity events"):
        return (
            db.query(TeachingActivityEvent)
            .filter(
                TeachingActivityEvent.teacher_id == teacher_id,
                TeachingActivityEvent.sent_at >= window_start,
                TeachingActivityEvent.sent_at <= window_end,
            )
            .order_by(TeachingActivityEvent.student_id, TeachingActivityEvent.sent_at)
            .all()
        )
