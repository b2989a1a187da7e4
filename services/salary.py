"""
Teacher salary aggregation.

    net_salary = base_salary - lateness - absence + bonuses

base_salary is the prorated earnings of every student the teacher actually
taught in the window. Each teacher's computation is a pure function of the
data store at call time, so batches fan out over a bounded thread pool with
one Session per worker.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from constants import AnomalyCode, PaymentStatus
from database import MAX_WORKERS
from models import Enrollment, SalaryPayment, Teacher
from schemas import (
    Anomaly,
    BatchFailure,
    StudentEarning,
    SalarySummary,
    TeacherSalaryBatch,
    TeacherSalaryBreakdown,
)
from services.activity import load_activity_events, reconcile_teaching_days, working_days
from services.bonuses import calculate_bonuses
from services.deductions import (
    AbsenceDeductionCalculator,
    LatenessDeductionCalculator,
    load_absence_records,
    load_lateness_records,
)
from services.exceptions import EntityNotFound, InvalidRequest, data_access
from services.proration import ZERO, build_daily_ledger, prorate, to_money
from services.rate_resolver import RateResolver
from services.salary_config import SalaryCalculationConfig, load_salary_config
from utils.periods import parse_period, period_of

logger = logging.getLogger(__name__)

CacheKey = Tuple[int, date, date]


class SalaryCalculator:
    """
    Computes teacher salary breakdowns for one computation cycle.

    Construct one per request: the configuration is loaded once, and the memo
    cache keyed by (teacher_id, from_date, to_date) lives and dies with the
    instance, so it can never serve results from before a waiver committed
    in another cycle.
    """

    def __init__(
        self,
        db: Session,
        config: Optional[SalaryCalculationConfig] = None,
        session_factory: Optional[Callable[[], Session]] = None,
        max_workers: int = MAX_WORKERS,
    ):
        self.db = db
        self.config = config or load_salary_config(db)
        self.session_factory = session_factory
        self.max_workers = max(1, max_workers)
        self.rate_resolver = RateResolver(self.config.package_rates.items(), self.config.default_package_rate)
        self.lateness_calculator = LatenessDeductionCalculator.from_config(self.config)
        self.absence_calculator = AbsenceDeductionCalculator()
        self._cache: Dict[CacheKey, TeacherSalaryBreakdown] = {}

    def clear_cache(self) -> None:
        self._cache.clear()

    def compute_teacher_salary(self, teacher_id: int, from_date: date, to_date: date) -> TeacherSalaryBreakdown:
        """
        Full salary breakdown for one teacher over [from_date, to_date].

        Raises EntityNotFound for an unknown teacher.
        """
        key = (teacher_id, from_date, to_date)
        if key not in self._cache:
            self._cache[key] = self._compute(self.db, teacher_id, from_date, to_date)
        return self._cache[key].model_copy(deep=True)

    def compute_teacher_salaries(
        self,
        from_date: date,
        to_date: date,
        teacher_ids: Optional[Sequence[int]] = None,
    ) -> TeacherSalaryBatch:
        """
        Salaries for many teachers (all teachers when teacher_ids is None).

        An unknown teacher is reported in `failures` and does not abort the batch.
        Data store failures propagate.
        """
        if teacher_ids is None:
            with data_access("list teachers"):
                teacher_ids = [t.id for t in self.db.query(Teacher.id).order_by(Teacher.id).all()]

        pending = [tid for tid in dict.fromkeys(teacher_ids) if (tid, from_date, to_date) not in self._cache]
        outcomes = self._run_batch(pending, from_date, to_date)

        failures: List[BatchFailure] = []
        for teacher_id, outcome in outcomes:
            if isinstance(outcome, EntityNotFound):
                failures.append(BatchFailure(entity_id=teacher_id, error="not_found", detail=str(outcome)))
            else:
                self._cache[(teacher_id, from_date, to_date)] = outcome

        results = [
            self._cache[(tid, from_date, to_date)].model_copy(deep=True)
            for tid in dict.fromkeys(teacher_ids)
            if (tid, from_date, to_date) in self._cache
        ]
        if failures:
            logger.warning("salary_batch_failures count=%s ids=%s", len(failures), [f.entity_id for f in failures])
        return TeacherSalaryBatch(from_date=from_date, to_date=to_date, results=results, failures=failures)

    def _run_batch(self, teacher_ids: List[int], from_date: date, to_date: date):
        def run(teacher_id: int, db: Session):
            try:
                return teacher_id, self._compute(db, teacher_id, from_date, to_date)
            except EntityNotFound as e:
                return teacher_id, e

        if self.session_factory is None or self.max_workers == 1 or len(teacher_ids) <= 1:
            return [run(tid, self.db) for tid in teacher_ids]

        def run_isolated(teacher_id: int):
            db = self.session_factory()
            try:
                return run(teacher_id, db)
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(run_isolated, teacher_ids))

    def _compute(self, db: Session, teacher_id: int, from_date: date, to_date: date) -> TeacherSalaryBreakdown:
        with data_access("load teacher"):
            teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
        if not teacher:
            raise EntityNotFound("Teacher", teacher_id)

        anomalies: List[Anomaly] = []
        window_days = working_days(from_date, to_date, self.config.include_sundays) if from_date <= to_date else 0
        if window_days <= 0:
            logger.warning(
                "invalid_window teacher=%s from=%s to=%s", teacher_id, from_date, to_date
            )
            anomalies.append(Anomaly(
                code=AnomalyCode.INVALID_WINDOW,
                message="Window has no working days; earnings set to zero",
                context={"from_date": from_date.isoformat(), "to_date": to_date.isoformat()},
            ))

        # === Base salary: prorated earnings per student taught ===
        teaching_days = reconcile_teaching_days(
            load_activity_events(db, teacher_id, from_date, to_date),
            self.config.include_sundays,
        )
        enrollments = self._enrollments_for(db, list(teaching_days))

        student_breakdown: List[StudentEarning] = []
        prorated_all = []
        for student_id, dates in teaching_days.items():
            enrollment = enrollments.get(student_id)
            package = enrollment.package_label if enrollment else None
            resolved = self.rate_resolver.resolve(package)
            if resolved.anomaly:
                anomalies.append(resolved.anomaly.model_copy(
                    update={"context": {**resolved.anomaly.context, "student_id": student_id}}
                ))

            prorated = prorate(resolved.monthly_salary, dates.keys(), window_days)
            prorated_all.append(prorated)
            student_breakdown.append(StudentEarning(
                student_id=student_id,
                student_name=enrollment.student_name if enrollment else None,
                package=package,
                monthly_rate=to_money(resolved.monthly_salary),
                daily_rate=prorated.daily_rate,
                days_worked=prorated.days_worked,
                total_earned=prorated.total_earned,
                teaching_dates=list(dates.keys()),
            ))

        daily_earnings = build_daily_ledger(prorated_all)
        base_salary = to_money(sum((s.total_earned for s in student_breakdown), ZERO))

        # === Deductions and bonuses ===
        lateness = self.lateness_calculator.calculate(load_lateness_records(db, teacher_id, from_date, to_date))
        absence = self.absence_calculator.calculate(load_absence_records(db, teacher_id, from_date, to_date))
        bonuses = calculate_bonuses(db, teacher_id, from_date, to_date)

        net_salary = to_money(base_salary - lateness.total - absence.total + bonuses.total)
        period = period_of(from_date)
        status = get_payment_status(db, teacher_id, period)

        actual_teaching_days = len(daily_earnings)
        average_daily = to_money(base_salary / actual_teaching_days) if actual_teaching_days else ZERO

        return TeacherSalaryBreakdown(
            teacher_id=teacher.id,
            teacher_name=teacher.teacher_name,
            from_date=from_date,
            to_date=to_date,
            period=period,
            status=status,
            base_salary=base_salary,
            lateness_deduction=lateness.total,
            absence_deduction=absence.total,
            bonuses=bonuses.total,
            net_salary=net_salary,
            num_students=len(student_breakdown),
            teaching_days=actual_teaching_days,
            daily_earnings=daily_earnings,
            student_breakdown=student_breakdown,
            lateness_breakdown=lateness.lines,
            absence_breakdown=absence.lines,
            bonus_breakdown=bonuses.lines,
            summary=SalarySummary(
                working_days=max(window_days, 0),
                actual_teaching_days=actual_teaching_days,
                average_daily_earning=average_daily,
                total_deductions=to_money(lateness.total + absence.total),
                net_salary=net_salary,
            ),
            anomalies=anomalies,
        )

    @staticmethod
    def _enrollments_for(db: Session, student_ids: List[int]) -> Dict[int, Enrollment]:
        if not student_ids:
            return {}
        with data_access("load enrollments"):
            rows = db.query(Enrollment).filter(Enrollment.student_id.in_(student_ids)).all()
        return {e.student_id: e for e in rows}


# ============================================
# Payment status
# ============================================

def get_payment_status(db: Session, teacher_id: int, period: str) -> PaymentStatus:
    """Stored status for (teacher, period); a missing row means Unpaid."""
    with data_access("load payment status"):
        row = (
            db.query(SalaryPayment)
            .filter(SalaryPayment.teacher_id == teacher_id, SalaryPayment.period == period)
            .first()
        )
    return PaymentStatus(row.status) if row else PaymentStatus.UNPAID


def set_payment_status(db: Session, teacher_id: int, period: str, status: PaymentStatus) -> SalaryPayment:
    """
    Upsert the payment status for (teacher, period) in one transaction.

    The unique constraint on (teacher_id, period) decides a concurrent insert
    race; the loser re-reads the winner's row and updates it.
    """
    try:
        parse_period(period)
    except ValueError as e:
        raise InvalidRequest(str(e))
    try:
        status = PaymentStatus(status)
    except ValueError:
        raise InvalidRequest(f"Unknown payment status {status!r}")

    with data_access("load teacher"):
        teacher = db.query(Teacher).filter(Teacher.id == teacher_id).first()
    if not teacher:
        raise EntityNotFound("Teacher", teacher_id)

    with data_access("set payment status"):
        try:
            row = _locked_payment_row(db, teacher_id, period)
            if row is None:
                row = SalaryPayment(teacher_id=teacher_id, period=period, status=status.value)
                db.add(row)
            else:
                row.status = status.value
            db.commit()
        except IntegrityError:
            db.rollback()
            row = _locked_payment_row(db, teacher_id, period)
            row.status = status.value
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(row)

    logger.info("payment_status_set teacher=%s period=%s status=%s", teacher_id, period, status.value)
    return row


def _locked_payment_row(db: Session, teacher_id: int, period: str) -> Optional[SalaryPayment]:
    return (
        db.query(SalaryPayment)
        .filter(SalaryPayment.teacher_id == teacher_id, SalaryPayment.period == period)
        .with_for_update()
        .first()
    )
