"""Tests for ORM model integrity: constraints the services rely on."""
import pytest
from datetime import date
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from models import AbsenceRecord, Enrollment, LatenessRecord, SalaryPayment, Teacher

# Tables whose rows are flagged as waived, never deleted
WAIVABLE_MODELS = [LatenessRecord, AbsenceRecord]


class TestWaivableRecords:
    """Waiver flags must exist and default to not waived."""

    @pytest.mark.parametrize("model", WAIVABLE_MODELS)
    def test_waived_column_not_nullable(self, model):
        column = model.__table__.columns["waived"]
        assert column.nullable is False
        assert column.default.arg is False

    def test_new_absence_is_not_waived(self, db_session):
        db_session.add(AbsenceRecord(teacher_id=1, class_date=date(2026, 3, 2), deduction_applied=Decimal("25.00")))
        db_session.commit()
        assert db_session.query(AbsenceRecord).one().waived is False


class TestUniqueness:

    def test_one_salary_payment_per_teacher_period(self, db_session):
        db_session.add(Teacher(id=1, teacher_name="Ustaz Ahmed"))
        db_session.add(SalaryPayment(teacher_id=1, period="2026-03", status="Paid"))
        db_session.commit()

        db_session.add(SalaryPayment(teacher_id=1, period="2026-03", status="Unpaid"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_one_enrollment_per_student(self, db_session):
        db_session.add(Enrollment(student_id=101, student_name="A", status="Active"))
        db_session.commit()

        db_session.add(Enrollment(student_id=101, student_name="B", status="Active"))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()
