"""
Tests for activity reconciliation and working-day counting.
"""
from datetime import date, datetime

from models import TeachingActivityEvent
from services.activity import load_activity_events, reconcile_teaching_days, working_days


def event(student_id: int, sent_at: datetime, teacher_id: int = 1) -> TeachingActivityEvent:
    return TeachingActivityEvent(teacher_id=teacher_id, student_id=student_id, sent_at=sent_at)


class TestWorkingDays:

    def test_sundays_excluded(self):
        # 2026-03-01 is a Sunday; the window holds 5 Sundays
        assert working_days(date(2026, 3, 1), date(2026, 4, 4), include_sundays=False) == 30

    def test_sundays_included(self):
        assert working_days(date(2026, 3, 1), date(2026, 4, 4), include_sundays=True) == 35

    def test_single_sunday_window_is_empty(self):
        assert working_days(date(2026, 3, 1), date(2026, 3, 1), include_sundays=False) == 0

    def test_inverted_window_is_empty(self):
        assert working_days(date(2026, 3, 10), date(2026, 3, 1), include_sundays=True) == 0


class TestReconcileTeachingDays:

    def test_keeps_earliest_event_per_date(self):
        events = [
            event(7, datetime(2026, 3, 2, 15, 0)),
            event(7, datetime(2026, 3, 2, 9, 30)),
            event(7, datetime(2026, 3, 3, 10, 0)),
        ]
        result = reconcile_teaching_days(events, include_sundays=False)
        assert result == {
            7: {
                date(2026, 3, 2): datetime(2026, 3, 2, 9, 30),
                date(2026, 3, 3): datetime(2026, 3, 3, 10, 0),
            }
        }

    def test_sunday_dropped_unless_included(self):
        events = [event(7, datetime(2026, 3, 1, 9, 0)), event(7, datetime(2026, 3, 2, 9, 0))]
        assert list(reconcile_teaching_days(events, include_sundays=False)[7]) == [date(2026, 3, 2)]
        assert len(reconcile_teaching_days(events, include_sundays=True)[7]) == 2

    def test_students_kept_separate(self):
        events = [event(9, datetime(2026, 3, 2, 9, 0)), event(7, datetime(2026, 3, 2, 9, 0))]
        result = reconcile_teaching_days(events, include_sundays=False)
        assert list(result) == [7, 9]

    def test_output_is_deterministic(self):
        events = [
            event(9, datetime(2026, 3, 4, 9, 0)),
            event(7, datetime(2026, 3, 3, 9, 0)),
            event(9, datetime(2026, 3, 2, 9, 0)),
        ]
        assert reconcile_teaching_days(events, False) == reconcile_teaching_days(list(reversed(events)), False)
        assert list(reconcile_teaching_days(events, False)[9]) == [date(2026, 3, 2), date(2026, 3, 4)]


class TestLoadActivityEvents:

    def test_window_is_inclusive_and_per_teacher(self, db_session):
        db_session.add_all([
            event(7, datetime(2026, 3, 2, 0, 0)),
            event(7, datetime(2026, 3, 5, 23, 59)),
            event(7, datetime(2026, 3, 6, 0, 0)),
            event(7, datetime(2026, 3, 3, 9, 0), teacher_id=2),
        ])
        db_session.commit()

        events = load_activity_events(db_session, 1, date(2026, 3, 2), date(2026, 3, 5))
        assert [e.sent_at for e in events] == [datetime(2026, 3, 2, 0, 0), datetime(2026, 3, 5, 23, 59)]
