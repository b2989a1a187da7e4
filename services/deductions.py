"""
Lateness and absence deductions.

Both calculators read only non-waived records and are independent of each
other. Deduction amounts are frozen on the record when it is created
(record_lateness / record_absence) so that a waiver removes exactly the
amount the salary computation had been subtracting.

Lateness:
    minutes_late <= excused threshold   -> 0
    otherwise                           -> daily_rate * tier percent
    tier = first configured range with start <= minutes_late < end

Absence:
    permitted                           -> 0 (permission overrides any stored value)
    otherwise                           -> deduction_applied
"""
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from models import AbsenceRecord, Enrollment, LatenessRecord
from schemas import AbsenceLine, AbsenceTotals, LatenessLine, LatenessTotals
from services.activity import working_days
from services.exceptions import data_access
from services.proration import ZERO, daily_rate, to_money
from services.rate_resolver import RateResolver
from services.salary_config import LatenessTierConfig, SalaryCalculationConfig
from utils.periods import period_bounds, period_of

logger = logging.getLogger(__name__)


class LatenessDeductionCalculator:
    """Tiered lateness deductions against a student's daily rate."""

    def __init__(self, tiers: Sequence[LatenessTierConfig], excused_threshold: int):
        self.tiers = list(tiers)
        self.excused_threshold = excused_threshold

    @classmethod
    def from_config(cls, config: SalaryCalculationConfig) -> "LatenessDeductionCalculator":
        return cls(config.lateness_tiers, config.excused_threshold)

    def tier_for(self, minutes_late: int) -> Optional[Tuple[int, LatenessTierConfig]]:
        for index, tier in enumerate(self.tiers):
            if tier.start <= minutes_late < tier.end:
                return index, tier
        return None

    def assess(self, minutes_late: int, rate: Decimal) -> Tuple[Decimal, Optional[str]]:
        """
        Price a lateness of `minutes_late` against a daily rate.

        Returns (deduction, tier label). Excused or untiered lateness costs nothing.
        """
        if minutes_late <= self.excused_threshold:
            return ZERO, None
        found = self.tier_for(minutes_late)
        if found is None:
            return ZERO, None
        index, tier = found
        deduction = to_money(Decimal(rate) * tier.percent / Decimal(100))
        return deduction, f"Tier {index + 1} ({tier.percent}%)"

    def effective_deduction(self, record: LatenessRecord) -> Decimal:
        if record.waived or record.minutes_late <= self.excused_threshold:
            return ZERO
        return to_money(record.deduction or 0)

    def calculate(self, records: Sequence[LatenessRecord]) -> LatenessTotals:
        lines: List[LatenessLine] = []
        total = ZERO
        for record in records:
            if record.waived:
                continue
            amount = self.effective_deduction(record)
            if amount <= 0:
                continue
            total += amount
            lines.append(LatenessLine(
                record_id=record.id,
                date=record.class_date,
                student_id=record.student_id,
                time_slot=record.time_slot,
                scheduled_time=record.scheduled_time,
                actual_time=record.actual_time,
                minutes_late=record.minutes_late,
                tier=record.tier_label,
                deduction=amount,
            ))
        return LatenessTotals(lines=lines, total=to_money(total))


class AbsenceDeductionCalculator:
    """Absence deductions; permission always wins over the stored amount."""

    @staticmethod
    def effective_deduction(record: AbsenceRecord) -> Decimal:
        if record.waived or record.permitted:
            return ZERO
        return to_money(record.deduction_applied or 0)

    def calculate(self, records: Sequence[AbsenceRecord]) -> AbsenceTotals:
        lines: List[AbsenceLine] = []
        total = ZERO
        for record in records:
            if record.waived:
                continue
            amount = self.effective_deduction(record)
            total += amount
            lines.append(AbsenceLine(
                record_id=record.id,
                date=record.class_date,
                student_id=record.student_id,
                time_slot=record.time_slot,
                permitted=record.permitted,
                reason=record.reason_category,
                deduction=amount,
            ))
        return AbsenceTotals(lines=lines, total=to_money(total))


# ============================================
# Record loading
# ============================================

def load_lateness_records(
    db: Session, teacher_id: int, from_date: date, to_date: date
) -> List[LatenessRecord]:
    """Non-waived lateness records for a teacher in [from_date, to_date]."""
    with data_access("load lateness records"):
        return (
            db.query(LatenessRecord)
            .filter(
                LatenessRecord.teacher_id == teacher_id,
                LatenessRecord.class_date >= from_date,
                LatenessRecord.class_date <= to_date,
                LatenessRecord.waived.is_(False),
            )
            .order_by(LatenessRecord.class_date, LatenessRecord.id)
            .all()
        )


def load_absence_records(
    db: Session, teacher_id: int, from_date: date, to_date: date
) -> List[AbsenceRecord]:
    """Non-waived absence records for a teacher in [from_date, to_date]."""
    with data_access("load absence records"):
        return (
            db.query(AbsenceRecord)
            .filter(
                AbsenceRecord.teacher_id == teacher_id,
                AbsenceRecord.class_date >= from_date,
                AbsenceRecord.class_date <= to_date,
                AbsenceRecord.waived.is_(False),
            )
            .order_by(AbsenceRecord.class_date, AbsenceRecord.id)
            .all()
        )


# ============================================
# Intake (attendance submission)
# ============================================

def _student_package(db: Session, student_id: Optional[int]) -> Optional[str]:
    if student_id is None:
        return None
    with data_access("load student package"):
        enrollment = db.query(Enrollment).filter(Enrollment.student_id == student_id).first()
    return enrollment.package_label if enrollment else None


def minutes_between(scheduled: datetime, actual: datetime) -> int:
    """Whole minutes late (never negative)."""
    return max(0, round((actual - scheduled).total_seconds() / 60))


def record_lateness(
    db: Session,
    config: SalaryCalculationConfig,
    teacher_id: int,
    student_id: int,
    scheduled_time: datetime,
    actual_time: datetime,
    time_slot: Optional[str] = None,
) -> LatenessRecord:
    """
    Create a lateness record with its deduction frozen.

    The daily rate is the student's package rate prorated over the calendar
    month of the class date.
    """
    class_date = scheduled_time.date()
    minutes_late = minutes_between(scheduled_time, actual_time)

    resolver = RateResolver(config.package_rates.items(), config.default_package_rate)
    resolved = resolver.resolve(_student_package(db, student_id))
    month_start, month_end = period_bounds(period_of(class_date))
    rate = daily_rate(resolved.monthly_salary, working_days(month_start, month_end, config.include_sundays))

    calculator = LatenessDeductionCalculator.from_config(config)
    deduction, tier_label = calculator.assess(minutes_late, rate)

    record = LatenessRecord(
        teacher_id=teacher_id,
        student_id=student_id,
        class_date=class_date,
        time_slot=time_slot,
        scheduled_time=scheduled_time,
        actual_time=actual_time,
        minutes_late=minutes_late,
        tier_label=tier_label,
        deduction=deduction,
        waived=False,
    )
    with data_access("record lateness"):
        db.add(record)
        db.commit()
        db.refresh(record)

    logger.info(
        "lateness_recorded teacher=%s student=%s date=%s minutes=%s deduction=%s",
        teacher_id, student_id, class_date, minutes_late, deduction,
    )
    return record


def absence_amount(config: SalaryCalculationConfig, package_label: Optional[str]) -> Decimal:
    """Package-specific absence amount, else the configured flat amount."""
    if package_label:
        configured = config.package_deductions.get(package_label)
        if configured is None:
            normalized = package_label.strip().lower()
            configured = next(
                (v for k, v in config.package_deductions.items() if k.strip().lower() == normalized),
                None,
            )
        if configured is not None and configured.absence > 0:
            return to_money(configured.absence)
    return to_money(config.absence_flat_deduction)


def record_absence(
    db: Session,
    config: SalaryCalculationConfig,
    teacher_id: int,
    class_date: date,
    student_id: Optional[int] = None,
    time_slot: Optional[str] = None,
    permitted: bool = False,
    reason_category: Optional[str] = None,
) -> AbsenceRecord:
    """Create an absence record with deduction_applied frozen from configuration."""
    amount = absence_amount(config, _student_package(db, student_id))
    record = AbsenceRecord(
        teacher_id=teacher_id,
        student_id=student_id,
        class_date=class_date,
        time_slot=time_slot,
        permitted=permitted,
        deduction_applied=amount,
        reason_category=reason_category,
        waived=False,
    )
    with data_access("record absence"):
        db.add(record)
        db.commit()
        db.refresh(record)

    logger.info(
        "absence_recorded teacher=%s date=%s permitted=%s deduction=%s",
        teacher_id, class_date, permitted, amount,
    )
    return record
