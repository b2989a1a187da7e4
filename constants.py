"""
Shared constants for the compensation engine.

Centralizes status values, setting keys and configuration defaults used
across services and routers.
"""
from decimal import Decimal
from enum import Enum


class EnrollmentStatus(str, Enum):
    """
    Student enrollment statuses as written by the registration workflow.

    Using str + Enum allows direct comparison with string values and JSON serialization.
    """
    ACTIVE = 'Active'
    NOT_YET = 'Not Yet'
    LEAVE = 'Leave'
    RAMADAN_LEAVE = 'Ramadan Leave'
    COMPLETED = 'Completed'
    NOT_SUCCEED = 'Not Succeed'


class PaymentStatus(str, Enum):
    """Teacher salary payment status for a period."""
    PAID = 'Paid'
    UNPAID = 'Unpaid'


class StudentPaymentStatus(str, Enum):
    """Status of a student's monthly payment/deposit record."""
    PAID = 'paid'
    FREE = 'free'
    PENDING = 'pending'
    REJECTED = 'rejected'


class AdjustmentType(str, Enum):
    """Deduction waiver (adjustment) kinds."""
    WAIVE_LATENESS = 'waive_lateness'
    WAIVE_ABSENCE = 'waive_absence'


class WaiverState(str, Enum):
    """Waiver request lifecycle: Requested -> Previewed -> Applied."""
    REQUESTED = 'Requested'
    PREVIEWED = 'Previewed'
    APPLIED = 'Applied'


class AnomalyCode(str, Enum):
    """Non-fatal conditions attached to computation results."""
    UNCONFIGURED_PACKAGE = 'unconfigured_package'
    INVALID_WINDOW = 'invalid_window'


# Student payment statuses that count as "paid this period" for controllers
SETTLED_PAYMENT_STATUSES = [
    StudentPaymentStatus.PAID.value,
    StudentPaymentStatus.FREE.value,
]

# ============================================
# Setting keys (settings table)
# ============================================

SETTING_INCLUDE_SUNDAYS = 'include_sundays'
SETTING_EXCUSED_THRESHOLD = 'lateness_excused_threshold'
SETTING_DEFAULT_PACKAGE_RATE = 'default_package_rate'
SETTING_ABSENCE_FLAT_DEDUCTION = 'absence_flat_deduction'
SETTING_PAYMENT_WINDOW_PADDING = 'payment_window_padding_days'

# ============================================
# Defaults used when a setting row is missing
# ============================================

DEFAULT_INCLUDE_SUNDAYS = False
DEFAULT_EXCUSED_THRESHOLD_MINUTES = 3
DEFAULT_PACKAGE_RATE = Decimal("900.00")
DEFAULT_ABSENCE_DEDUCTION = Decimal("25.00")
DEFAULT_PAYMENT_WINDOW_PADDING_DAYS = 7

# Controller earnings defaults when no active config version exists
DEFAULT_CONTROLLER_EARNINGS_CONFIG = {
    "main_base_rate": Decimal("40"),
    "referral_base_rate": Decimal("40"),
    "leave_penalty_multiplier": Decimal("3"),
    "leave_threshold": 5,
    "unpaid_penalty_multiplier": Decimal("2"),
    "referral_bonus_multiplier": Decimal("4"),
    "target_earnings": Decimal("3000"),
}

# Bounded retries for the waiver match-and-flip transaction
WAIVER_APPLY_MAX_ATTEMPTS = 3

# Money is kept to 2 decimal places throughout
CENTS = Decimal("0.01")
