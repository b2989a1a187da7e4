"""
Salary calculation configuration.

Loaded fresh from the database for each computation cycle and handed to the
calculators as an immutable value; nothing here is cached at module level.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from constants import (
    SETTING_INCLUDE_SUNDAYS,
    SETTING_EXCUSED_THRESHOLD,
    SETTING_DEFAULT_PACKAGE_RATE,
    SETTING_ABSENCE_FLAT_DEDUCTION,
    SETTING_PAYMENT_WINDOW_PADDING,
    DEFAULT_INCLUDE_SUNDAYS,
    DEFAULT_EXCUSED_THRESHOLD_MINUTES,
    DEFAULT_PACKAGE_RATE,
    DEFAULT_ABSENCE_DEDUCTION,
    DEFAULT_PAYMENT_WINDOW_PADDING_DAYS,
)
from models import LatenessTier, PackageDeduction, PackageRate, Setting
from services.exceptions import data_access

logger = logging.getLogger(__name__)


class LatenessTierConfig(BaseModel):
    """Minutes in [start, end) cost `percent` of the daily rate."""
    start: int
    end: int
    percent: Decimal

    model_config = ConfigDict(frozen=True)


class PackageDeductionConfig(BaseModel):
    lateness: Decimal
    absence: Decimal

    model_config = ConfigDict(frozen=True)


class SalaryCalculationConfig(BaseModel):
    """Business configuration in force for one computation cycle."""
    include_sundays: bool = DEFAULT_INCLUDE_SUNDAYS
    excused_threshold: int = DEFAULT_EXCUSED_THRESHOLD_MINUTES
    lateness_tiers: List[LatenessTierConfig] = []
    package_deductions: Dict[str, PackageDeductionConfig] = {}
    package_rates: Dict[str, Decimal] = {}
    default_package_rate: Decimal = DEFAULT_PACKAGE_RATE
    absence_flat_deduction: Decimal = DEFAULT_ABSENCE_DEDUCTION
    payment_window_padding_days: int = DEFAULT_PAYMENT_WINDOW_PADDING_DAYS

    model_config = ConfigDict(frozen=True)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


def _parse_int(key: str, value: Optional[str], default: int) -> int:
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Invalid integer setting %s=%r, using default %s", key, value, default)
        return default


def _parse_decimal(key: str, value: Optional[str], default: Decimal) -> Decimal:
    if value is None:
        return default
    try:
        return Decimal(value)
    except InvalidOperation:
        logger.warning("Invalid decimal setting %s=%r, using default %s", key, value, default)
        return default


def load_salary_config(db: Session) -> SalaryCalculationConfig:
    """
    Load salary configuration from the settings, tier, package rate and
    package deduction tables. Missing settings fall back to defaults.
    """
    with data_access("load salary configuration"):
        settings = {s.key: s.value for s in db.query(Setting).all()}
        tiers = db.query(LatenessTier).order_by(LatenessTier.start_minute, LatenessTier.id).all()
        deductions = db.query(PackageDeduction).all()
        rates = db.query(PackageRate).order_by(PackageRate.id).all()

    config = SalaryCalculationConfig(
        include_sundays=_parse_bool(settings.get(SETTING_INCLUDE_SUNDAYS), DEFAULT_INCLUDE_SUNDAYS),
        excused_threshold=_parse_int(
            SETTING_EXCUSED_THRESHOLD, settings.get(SETTING_EXCUSED_THRESHOLD),
            DEFAULT_EXCUSED_THRESHOLD_MINUTES,
        ),
        lateness_tiers=[
            LatenessTierConfig(start=t.start_minute, end=t.end_minute, percent=Decimal(t.percent))
            for t in tiers
        ],
        package_deductions={
            d.package_label: PackageDeductionConfig(
                lateness=Decimal(d.lateness_base_amount or 0),
                absence=Decimal(d.absence_base_amount or 0),
            )
            for d in deductions
        },
        package_rates={r.package_label: Decimal(r.monthly_salary) for r in rates},
        default_package_rate=_parse_decimal(
            SETTING_DEFAULT_PACKAGE_RATE, settings.get(SETTING_DEFAULT_PACKAGE_RATE),
            DEFAULT_PACKAGE_RATE,
        ),
        absence_flat_deduction=_parse_decimal(
            SETTING_ABSENCE_FLAT_DEDUCTION, settings.get(SETTING_ABSENCE_FLAT_DEDUCTION),
            DEFAULT_ABSENCE_DEDUCTION,
        ),
        payment_window_padding_days=_parse_int(
            SETTING_PAYMENT_WINDOW_PADDING, settings.get(SETTING_PAYMENT_WINDOW_PADDING),
            DEFAULT_PAYMENT_WINDOW_PADDING_DAYS,
        ),
    )

    logger.debug(
        "Salary configuration loaded: include_sundays=%s tiers=%s package_rates=%s",
        config.include_sundays, len(config.lateness_tiers), len(config.package_rates),
    )
    return config
