"""
Proration of monthly package rates into daily earnings.

    daily_rate   = round(monthly_salary / working_days, 2)
    total_earned = round(daily_rate * len(teaching_dates), 2)

Rounding is ROUND_HALF_UP on Decimal so payslips match the figures admins
compute by hand.
"""
import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List

from constants import AnomalyCode, CENTS
from schemas import Anomaly, DailyEarning, ProratedEarnings

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def to_money(value) -> Decimal:
    """Round a numeric value to 2 decimal places, half up."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def daily_rate(monthly_salary: Decimal, working_days: int) -> Decimal:
    """Daily rate for a monthly salary. Caller guarantees working_days > 0."""
    return to_money(Decimal(monthly_salary) / Decimal(working_days))


def prorate(
    monthly_salary: Decimal,
    teaching_dates: Iterable[date],
    working_days: int,
) -> ProratedEarnings:
    """
    Prorate one student's monthly rate over the dates actually taught.

    A window with no working days cannot be prorated; it yields zero
    earnings and an INVALID_WINDOW anomaly instead of raising.
    """
    dates = sorted(set(teaching_dates))

    if working_days <= 0:
        logger.warning("invalid_window working_days=%s teaching_dates=%s", working_days, len(dates))
        return ProratedEarnings(
            daily_rate=ZERO,
            total_earned=ZERO,
            days_worked=len(dates),
            anomaly=Anomaly(
                code=AnomalyCode.INVALID_WINDOW,
                message="Window has no working days; earnings set to zero",
                context={"working_days": working_days},
            ),
        )

    rate = daily_rate(monthly_salary, working_days)
    return ProratedEarnings(
        daily_rate=rate,
        total_earned=to_money(rate * len(dates)),
        days_worked=len(dates),
        daily_amounts={d: rate for d in dates},
    )


def build_daily_ledger(earnings: Iterable[ProratedEarnings]) -> List[DailyEarning]:
    """
    Sum per-student daily amounts into one ledger entry per date.

    One teacher with many students earns several daily rates on the same date.
    """
    totals: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    for item in earnings:
        for day, amount in item.daily_amounts.items():
            totals[day] += amount
    return [DailyEarning(date=day, amount=to_money(amount)) for day, amount in sorted(totals.items())]
