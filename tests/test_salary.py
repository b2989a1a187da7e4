"""
Tests for teacher salary aggregation and payment status.

    net_salary = base_salary - lateness - absence + bonuses
"""
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

from constants import AnomalyCode, PaymentStatus
from models import Enrollment, PackageRate, SalaryPayment, Teacher, TeachingActivityEvent
from services.bonuses import calculate_bonuses
from services.exceptions import EntityNotFound, InvalidRequest
from services.salary import SalaryCalculator, get_payment_status, set_payment_status

# 2026-03-01 is a Sunday; this window has 30 non-Sunday days
WINDOW_START = date(2026, 3, 1)
WINDOW_END = date(2026, 4, 4)


def march_weekdays(count: int):
    days, current = [], date(2026, 3, 2)
    while len(days) < count:
        if current.weekday() != 6:
            days.append(current)
        current += timedelta(days=1)
    return days


@pytest.fixture
def taught_twenty_days(db_session, salary_config, sample_enrollment, add_activity):
    add_activity(1, 101, march_weekdays(20))
    # Later events the same day do not add days
    add_activity(1, 101, march_weekdays(20), hour=17)


class TestBaseSalary:

    def test_twenty_days_at_one_hundred(self, db_session, taught_twenty_days):
        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)

        assert result.base_salary == Decimal("2000.00")
        assert result.student_breakdown[0].daily_rate == Decimal("100.00")
        assert result.teaching_days == 20
        assert result.num_students == 1
        assert result.summary.working_days == 30
        assert result.summary.average_daily_earning == Decimal("100.00")
        assert sum(d.amount for d in result.daily_earnings) == result.base_salary
        assert result.anomalies == []

    def test_substitute_earns_for_days_taught(self, db_session, taught_twenty_days, add_activity):
        db_session.add(Teacher(id=2, teacher_name="Ustaza Sara"))
        db_session.commit()
        add_activity(2, 101, march_weekdays(3))

        result = SalaryCalculator(db_session).compute_teacher_salary(2, WINDOW_START, WINDOW_END)
        assert result.base_salary == Decimal("300.00")

    def test_daily_rates_summed_across_students(self, db_session, taught_twenty_days, add_activity):
        db_session.add(Enrollment(student_id=102, student_name="Second Student", teacher_id=1,
                                  package_label="europe", status="Active"))
        db_session.commit()
        add_activity(1, 102, march_weekdays(1))

        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        assert result.daily_earnings[0].amount == Decimal("150.00")
        assert result.base_salary == Decimal("2050.00")

    def test_unconfigured_package_uses_default_rate(self, db_session, salary_config, sample_teacher, add_activity):
        db_session.add(Enrollment(student_id=103, student_name="No Package", teacher_id=1,
                                  package_label="Mystery Plan", status="Active"))
        db_session.commit()
        add_activity(1, 103, march_weekdays(2))

        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        # default 900 / 30 = 30.00 per day
        assert result.base_salary == Decimal("60.00")
        assert result.anomalies[0].code == AnomalyCode.UNCONFIGURED_PACKAGE
        assert result.anomalies[0].context["student_id"] == 103

    def test_window_without_working_days(self, db_session, taught_twenty_days):
        result = SalaryCalculator(db_session).compute_teacher_salary(1, date(2026, 3, 8), date(2026, 3, 8))
        assert result.base_salary == Decimal("0.00")
        assert result.net_salary == Decimal("0.00")
        assert result.anomalies[0].code == AnomalyCode.INVALID_WINDOW

    def test_inverted_window_is_an_anomaly(self, db_session, taught_twenty_days):
        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_END, WINDOW_START)
        assert result.base_salary == Decimal("0.00")
        assert result.anomalies[0].code == AnomalyCode.INVALID_WINDOW


class TestNetSalary:

    def test_deductions_and_bonuses(self, db_session, taught_twenty_days, make_lateness, make_absence, make_bonus):
        make_lateness(1, date(2026, 3, 2), "25.00")
        make_absence(1, date(2026, 3, 3), "25.00")
        make_absence(1, date(2026, 3, 4), "999.00", permitted=True)
        make_bonus(1, date(2026, 3, 20), "100.00")

        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        assert result.lateness_deduction == Decimal("25.00")
        assert result.absence_deduction == Decimal("25.00")
        assert result.bonuses == Decimal("100.00")
        assert result.net_salary == Decimal("2050.00")
        assert result.summary.total_deductions == Decimal("50.00")
        assert len(result.absence_breakdown) == 2

    def test_bonuses_outside_window_ignored(self, db_session, sample_teacher, make_bonus):
        make_bonus(1, date(2026, 2, 28), "50.00")
        make_bonus(1, date(2026, 3, 1), "70.00")
        totals = calculate_bonuses(db_session, 1, WINDOW_START, WINDOW_END)
        assert totals.total == Decimal("70.00")
        assert [line.reason for line in totals.lines] == ["Quran competition"]


class TestRecompute:

    def test_recompute_is_identical(self, db_session, taught_twenty_days, make_lateness):
        make_lateness(1, date(2026, 3, 2), "25.00")
        first = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        second = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        assert first.model_dump_json() == second.model_dump_json()

    def test_cached_result_is_not_shared(self, db_session, taught_twenty_days):
        calculator = SalaryCalculator(db_session)
        first = calculator.compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        first.student_breakdown.clear()
        assert len(calculator.compute_teacher_salary(1, WINDOW_START, WINDOW_END).student_breakdown) == 1

    def test_unknown_teacher(self, db_session, salary_config):
        with pytest.raises(EntityNotFound):
            SalaryCalculator(db_session).compute_teacher_salary(999, WINDOW_START, WINDOW_END)


class TestBatch:

    def test_unknown_teacher_does_not_abort_batch(self, db_session, taught_twenty_days):
        batch = SalaryCalculator(db_session).compute_teacher_salaries(WINDOW_START, WINDOW_END, [1, 999])
        assert [r.teacher_id for r in batch.results] == [1]
        assert [(f.entity_id, f.error) for f in batch.failures] == [(999, "not_found")]

    def test_all_teachers_by_default(self, db_session, taught_twenty_days):
        db_session.add(Teacher(id=2, teacher_name="Ustaza Sara"))
        db_session.commit()
        batch = SalaryCalculator(db_session).compute_teacher_salaries(WINDOW_START, WINDOW_END)
        assert [r.teacher_id for r in batch.results] == [1, 2]
        assert batch.results[1].base_salary == Decimal("0.00")


class TestPaymentStatus:

    def test_missing_row_means_unpaid(self, db_session, sample_teacher):
        assert get_payment_status(db_session, 1, "2026-03") == PaymentStatus.UNPAID

    def test_upsert_keeps_one_row(self, db_session, sample_teacher):
        set_payment_status(db_session, 1, "2026-03", PaymentStatus.PAID)
        set_payment_status(db_session, 1, "2026-03", PaymentStatus.UNPAID)
        set_payment_status(db_session, 1, "2026-03", PaymentStatus.PAID)

        rows = db_session.query(SalaryPayment).filter(SalaryPayment.teacher_id == 1).all()
        assert len(rows) == 1
        assert rows[0].status == "Paid"

    def test_status_shown_on_breakdown(self, db_session, taught_twenty_days):
        set_payment_status(db_session, 1, "2026-03", PaymentStatus.PAID)
        result = SalaryCalculator(db_session).compute_teacher_salary(1, WINDOW_START, WINDOW_END)
        assert result.status == PaymentStatus.PAID
        assert result.period == "2026-03"

    def test_invalid_period(self, db_session, sample_teacher):
        with pytest.raises(InvalidRequest):
            set_payment_status(db_session, 1, "2026-13", PaymentStatus.PAID)

    def test_unknown_status(self, db_session, sample_teacher):
        with pytest.raises(InvalidRequest):
            set_payment_status(db_session, 1, "2026-03", "Settled")
        assert db_session.query(SalaryPayment).count() == 0

    def test_unknown_teacher(self, db_session):
        with pytest.raises(EntityNotFound):
            set_payment_status(db_session, 999, "2026-03", PaymentStatus.PAID)


class TestThreadedBatch:

    def test_workers_use_their_own_sessions(self, file_session_factory):
        db = file_session_factory()
        db.add(PackageRate(package_label="3 Days Package", monthly_salary=Decimal("3000.00")))
        for teacher_id in range(1, 6):
            student_id = 100 + teacher_id
            db.add(Teacher(id=teacher_id, teacher_name=f"Teacher {teacher_id}"))
            db.add(Enrollment(student_id=student_id, student_name=f"Student {student_id}", teacher_id=teacher_id,
                              package_label="3 Days Package", status="Active"))
            for day in march_weekdays(20):
                db.add(TeachingActivityEvent(teacher_id=teacher_id, student_id=student_id,
                                             sent_at=datetime(day.year, day.month, day.day, 9, 0)))
        db.commit()

        opened = []

        def worker_session():
            session = file_session_factory()
            opened.append(session)
            return session

        try:
            calculator = SalaryCalculator(db, session_factory=worker_session, max_workers=4)
            batch = calculator.compute_teacher_salaries(WINDOW_START, WINDOW_END, [1, 2, 3, 4, 5, 999])
        finally:
            db.close()

        assert [r.teacher_id for r in batch.results] == [1, 2, 3, 4, 5]
        assert {r.base_salary for r in batch.results} == {Decimal("2000.00")}
        assert [(f.entity_id, f.error) for f in batch.failures] == [(999, "not_found")]
        assert len(opened) == 6
        assert db not in opened
