"""
Controller earnings.

A controller is paid on the health of the student cohort they own:

    base          = active * main_base_rate
    leave_penalty = max(leaves_this_period - leave_threshold, 0)
                    * leave_penalty_multiplier * main_base_rate
    unpaid        = unpaid_active * unpaid_penalty_multiplier * main_base_rate
    referral      = referred_active * referral_bonus_multiplier * referral_base_rate
    total         = base - leave_penalty - unpaid + referral

Enrollment status is a snapshot (no history is kept), so the previous-period
and year-to-date figures re-run the same formula over the current cohort with
each period's own dates and payments.
"""
import logging
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Set

from sqlalchemy.orm import Session

from constants import (
    DEFAULT_CONTROLLER_EARNINGS_CONFIG,
    EnrollmentStatus,
    SETTLED_PAYMENT_STATUSES,
)
from database import MAX_WORKERS
from models import Controller, ControllerEarningsConfig, Enrollment, StudentPayment
from schemas import (
    BatchFailure,
    ControllerEarnings,
    ControllerEarningsBatch,
    ControllerEarningsRates,
)
from services.exceptions import EntityNotFound, InvalidRequest, data_access
from services.proration import ZERO, to_money
from services.salary_config import load_salary_config
from utils.periods import parse_period, period_bounds, previous_period

logger = logging.getLogger(__name__)


def load_controller_rates(db: Session, period: str) -> ControllerEarningsRates:
    """Latest active config effective by the end of the period, else the defaults."""
    _, period_end = period_bounds(period)
    with data_access("load controller earnings config"):
        row = (
            db.query(ControllerEarningsConfig)
            .filter(
                ControllerEarningsConfig.is_active.is_(True),
                ControllerEarningsConfig.effective_from <= period_end,
            )
            .order_by(ControllerEarningsConfig.effective_from.desc(), ControllerEarningsConfig.id.desc())
            .first()
        )
    if row is None:
        logger.info("No active controller earnings config for %s, using defaults", period)
        return ControllerEarningsRates(**DEFAULT_CONTROLLER_EARNINGS_CONFIG)
    return ControllerEarningsRates.model_validate(row)


class CohortSnapshot:
    """One controller's students, referrals and settled payments, read once."""

    def __init__(
        self,
        controller: Controller,
        students: List[Enrollment],
        referrals: List[Enrollment],
        payments: List[StudentPayment],
        padding_days: int,
    ):
        self.controller = controller
        self.students = students
        self.referrals = referrals
        self.padding = timedelta(days=padding_days)
        self._payments: Dict[int, List[StudentPayment]] = defaultdict(list)
        for payment in payments:
            self._payments[payment.student_id].append(payment)

    def is_paid(self, student_id: int, period: str) -> bool:
        """A paid/free record billed for the period, or dated inside its padded window."""
        start, end = period_bounds(period)
        window_start, window_end = start - self.padding, end + self.padding
        return any(
            p.month == period or window_start <= p.paid_on <= window_end
            for p in self._payments.get(student_id, [])
        )


class ControllerEarningsCalculator:
    """Earnings for every controller (or one) in a period."""

    def __init__(
        self,
        db: Session,
        period: str,
        session_factory: Optional[Callable[[], Session]] = None,
        max_workers: int = MAX_WORKERS,
        rates: Optional[ControllerEarningsRates] = None,
        padding_days: Optional[int] = None,
    ):
        try:
            parse_period(period)
        except ValueError as e:
            raise InvalidRequest(str(e))
        self.db = db
        self.period = period
        self.session_factory = session_factory
        self.max_workers = max(1, max_workers)
        self.rates = rates or load_controller_rates(db, period)
        if padding_days is None:
            padding_days = load_salary_config(db).payment_window_padding_days
        self.padding_days = padding_days

    def calculate(self, controller_ids: Optional[Sequence[int]] = None) -> ControllerEarningsBatch:
        """
        Compute earnings per controller (every controller when controller_ids is None).

        An unknown controller is reported in `failures`; the others are unaffected.
        """
        if controller_ids is None:
            with data_access("list controllers"):
                controller_ids = [c.id for c in self.db.query(Controller.id).order_by(Controller.id).all()]
        controller_ids = list(dict.fromkeys(controller_ids))

        results: List[ControllerEarnings] = []
        failures: List[BatchFailure] = []
        for cid, outcome in self._run_batch(controller_ids):
            if isinstance(outcome, EntityNotFound):
                failures.append(BatchFailure(entity_id=cid, error="not_found", detail=str(outcome)))
            else:
                results.append(outcome)

        logger.info(
            "controller_earnings_computed period=%s controllers=%s failures=%s",
            self.period, len(results), len(failures),
        )
        return ControllerEarningsBatch(period=self.period, rates=self.rates, results=results, failures=failures)

    def _run_batch(self, controller_ids: List[int]):
        def run(controller_id: int, db: Session):
            try:
                return controller_id, self.compute(db, controller_id)
            except EntityNotFound as e:
                return controller_id, e

        if self.session_factory is None or self.max_workers == 1 or len(controller_ids) <= 1:
            return [run(cid, self.db) for cid in controller_ids]

        def run_isolated(controller_id: int):
            db = self.session_factory()
            try:
                return run(controller_id, db)
            finally:
                db.close()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            return list(executor.map(run_isolated, controller_ids))

    # ============================================
    # Per-controller computation
    # ============================================

    def compute(self, db: Session, controller_id: int) -> ControllerEarnings:
        snapshot = self._load_snapshot(db, controller_id)
        rates = self.rates
        start, end = period_bounds(self.period)

        active = [s for s in snapshot.students if s.status == EnrollmentStatus.ACTIVE.value]
        not_yet = [s for s in snapshot.students if s.status == EnrollmentStatus.NOT_YET.value]
        ramadan_leave = [s for s in snapshot.students if s.status == EnrollmentStatus.RAMADAN_LEAVE.value]
        leaves = self._leaves_in(snapshot, start, end)
        paid = [s for s in snapshot.students if snapshot.is_paid(s.student_id, self.period)]
        unpaid_active = [s for s in active if not snapshot.is_paid(s.student_id, self.period)]
        referred = self._referred_active(snapshot, self.period)
        linked = [
            s for s in snapshot.students
            if s.status in (EnrollmentStatus.ACTIVE.value, EnrollmentStatus.NOT_YET.value) and s.chat_id
        ]

        main_rate = rates.main_base_rate
        base = to_money(len(active) * main_rate)
        leave_penalty = to_money(
            max(len(leaves) - rates.leave_threshold, 0) * rates.leave_penalty_multiplier * main_rate
        )
        unpaid_penalty = to_money(len(unpaid_active) * rates.unpaid_penalty_multiplier * main_rate)
        referral_bonus = to_money(len(referred) * rates.referral_bonus_multiplier * rates.referral_base_rate)
        total = to_money(base - leave_penalty - unpaid_penalty + referral_bonus)

        previous = self._total_for(snapshot, previous_period(self.period))
        year, month = parse_period(self.period)
        year_to_date = to_money(sum(
            (total if m == month else self._total_for(snapshot, f"{year:04d}-{m:02d}") for m in range(1, month + 1)),
            ZERO,
        ))

        if rates.target_earnings > 0:
            achievement = to_money(total / rates.target_earnings * 100)
        else:
            achievement = ZERO
        growth = to_money((total - previous) / previous * 100) if previous > 0 else ZERO

        return ControllerEarnings(
            controller_id=snapshot.controller.id,
            controller_name=snapshot.controller.controller_name,
            period=self.period,
            active_students=len(active),
            not_yet_students=len(not_yet),
            leave_students_this_period=len(leaves),
            ramadan_leave_students=len(ramadan_leave),
            paid_this_period=len(paid),
            unpaid_active_this_period=len(unpaid_active),
            referenced_active_students=len(referred),
            linked_students=len(linked),
            base_earnings=base,
            leave_penalty=leave_penalty,
            unpaid_penalty=unpaid_penalty,
            referral_bonus=referral_bonus,
            total_earnings=total,
            target_earnings=to_money(rates.target_earnings),
            achievement_percentage=achievement,
            growth_rate=growth,
            previous_period_earnings=previous,
            year_to_date_earnings=year_to_date,
        )

    def _total_for(self, snapshot: CohortSnapshot, period: str) -> Decimal:
        """total_earnings for another period over the same cohort."""
        rates = self.rates
        start, end = period_bounds(period)
        active = [s for s in snapshot.students if s.status == EnrollmentStatus.ACTIVE.value]
        leaves = self._leaves_in(snapshot, start, end)
        unpaid = [s for s in active if not snapshot.is_paid(s.student_id, period)]
        referred = self._referred_active(snapshot, period)

        main_rate = rates.main_base_rate
        return to_money(
            len(active) * main_rate
            - max(len(leaves) - rates.leave_threshold, 0) * rates.leave_penalty_multiplier * main_rate
            - len(unpaid) * rates.unpaid_penalty_multiplier * main_rate
            + len(referred) * rates.referral_bonus_multiplier * rates.referral_base_rate
        )

    @staticmethod
    def _leaves_in(snapshot: CohortSnapshot, start: date, end: date) -> List[Enrollment]:
        return [
            s for s in snapshot.students
            if s.status == EnrollmentStatus.LEAVE.value and s.start_date and start <= s.start_date <= end
        ]

    @staticmethod
    def _referred_active(snapshot: CohortSnapshot, period: str) -> List[Enrollment]:
        """Referrals registered, started and paid in the period and not yet claimed by a registrar."""
        start, end = period_bounds(period)
        return [
            s for s in snapshot.referrals
            if s.status == EnrollmentStatus.ACTIVE.value
            and s.start_date and start <= s.start_date <= end
            and s.registration_date and start <= s.registration_date <= end
            and not s.registrar
            and snapshot.is_paid(s.student_id, period)
        ]

    def _load_snapshot(self, db: Session, controller_id: int) -> CohortSnapshot:
        with data_access("load controller cohort"):
            controller = db.query(Controller).filter(Controller.id == controller_id).first()
            if not controller:
                raise EntityNotFound("Controller", controller_id)

            students = (
                db.query(Enrollment)
                .filter(Enrollment.controller_id == controller_id)
                .order_by(Enrollment.student_id)
                .all()
            )
            referrals = (
                db.query(Enrollment)
                .filter(Enrollment.referred_by_id == controller_id)
                .order_by(Enrollment.student_id)
                .all()
            )

            student_ids: Set[int] = {s.student_id for s in students} | {s.student_id for s in referrals}
            payments: List[StudentPayment] = []
            if student_ids:
                # Previous period through the current one covers growth and year-to-date
                year, _ = parse_period(self.period)
                first_period = min(f"{year:04d}-01", previous_period(self.period))
                window_start = period_bounds(first_period)[0] - timedelta(days=self.padding_days)
                window_end = period_bounds(self.period)[1] + timedelta(days=self.padding_days)
                payments = (
                    db.query(StudentPayment)
                    .filter(
                        StudentPayment.student_id.in_(student_ids),
                        StudentPayment.status.in_(SETTLED_PAYMENT_STATUSES),
                        (StudentPayment.paid_on.between(window_start, window_end))
                        | (StudentPayment.month.between(first_period, self.period)),
                    )
                    .all()
                )

        return CohortSnapshot(controller, students, referrals, payments, self.padding_days)
