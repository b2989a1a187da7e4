"""
Pydantic schemas for computation results and API request/response validation.
Money values are Decimal rounded to 2 places.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from decimal import Decimal

from constants import AdjustmentType, AnomalyCode, PaymentStatus


# ============================================
# Shared
# ============================================

class Anomaly(BaseModel):
    """Non-fatal condition surfaced alongside a result"""
    code: AnomalyCode
    message: str
    context: Dict[str, Any] = {}


class BatchFailure(BaseModel):
    """One entity of a batch that could not be computed"""
    entity_id: int
    error: str
    detail: str


# ============================================
# Rate / Proration Schemas
# ============================================

class ResolvedRate(BaseModel):
    """Monthly rate resolved for a package label"""
    package_label: Optional[str] = None
    matched_label: Optional[str] = None
    match: str = Field(..., description="exact, case_insensitive, trimmed, substring or default")
    monthly_salary: Decimal
    anomaly: Optional[Anomaly] = None


class ProratedEarnings(BaseModel):
    """Prorated earnings for one student taught by a teacher"""
    daily_rate: Decimal
    total_earned: Decimal
    days_worked: int = Field(..., ge=0)
    daily_amounts: Dict[date, Decimal] = {}
    anomaly: Optional[Anomaly] = None


class DailyEarning(BaseModel):
    """Per-date salary ledger entry (sum of daily rates of students taught that date)"""
    date: date
    amount: Decimal


class StudentEarning(BaseModel):
    """Per-student earnings detail"""
    student_id: int
    student_name: Optional[str] = None
    package: Optional[str] = None
    monthly_rate: Decimal
    daily_rate: Decimal
    days_worked: int
    total_earned: Decimal
    teaching_dates: List[date] = []


# ============================================
# Deduction / Bonus Schemas
# ============================================

class LatenessLine(BaseModel):
    """One lateness deduction line"""
    record_id: int
    date: date
    student_id: int
    time_slot: Optional[str] = None
    scheduled_time: datetime
    actual_time: datetime
    minutes_late: int
    tier: Optional[str] = None
    deduction: Decimal


class AbsenceLine(BaseModel):
    """One absence deduction line"""
    record_id: int
    date: date
    student_id: Optional[int] = None
    time_slot: Optional[str] = None
    permitted: bool
    reason: Optional[str] = None
    deduction: Decimal


class BonusLine(BaseModel):
    """One bonus record"""
    record_id: int
    date: date
    amount: Decimal
    reason: Optional[str] = None


class LatenessTotals(BaseModel):
    lines: List[LatenessLine] = []
    total: Decimal = Decimal("0.00")


class AbsenceTotals(BaseModel):
    lines: List[AbsenceLine] = []
    total: Decimal = Decimal("0.00")


class BonusTotals(BaseModel):
    lines: List[BonusLine] = []
    total: Decimal = Decimal("0.00")


# ============================================
# Teacher Salary Schemas
# ============================================

class SalarySummary(BaseModel):
    """Summary statistics for a teacher salary breakdown"""
    working_days: int
    actual_teaching_days: int
    average_daily_earning: Decimal
    total_deductions: Decimal
    net_salary: Decimal


class TeacherSalaryBreakdown(BaseModel):
    """Full salary breakdown for one teacher over a closed date range"""
    teacher_id: int
    teacher_name: str
    from_date: date
    to_date: date
    period: str
    status: PaymentStatus = PaymentStatus.UNPAID

    base_salary: Decimal
    lateness_deduction: Decimal
    absence_deduction: Decimal
    bonuses: Decimal
    net_salary: Decimal

    num_students: int
    teaching_days: int

    daily_earnings: List[DailyEarning] = []
    student_breakdown: List[StudentEarning] = []
    lateness_breakdown: List[LatenessLine] = []
    absence_breakdown: List[AbsenceLine] = []
    bonus_breakdown: List[BonusLine] = []
    summary: SalarySummary
    anomalies: List[Anomaly] = []


class TeacherSalaryBatch(BaseModel):
    """Salaries for many teachers; failures do not abort the others"""
    from_date: date
    to_date: date
    results: List[TeacherSalaryBreakdown] = []
    failures: List[BatchFailure] = []


class PaymentStatusUpdate(BaseModel):
    """Request body for setting a teacher's payment status"""
    period: str = Field(..., pattern=r"^\d{4}-\d{2}$", description="Period in YYYY-MM format")
    status: PaymentStatus


class SalaryPaymentResponse(BaseModel):
    """Stored salary payment status"""
    teacher_id: int
    period: str
    status: PaymentStatus
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ============================================
# Deduction Waiver Schemas
# ============================================

class WaiverFilter(BaseModel):
    """Record filter shared by waiver preview and apply"""
    adjustment_type: AdjustmentType
    start_date: date
    end_date: date
    teacher_ids: List[int] = Field(..., description="Teachers whose deductions are waived")
    time_slots: Optional[List[str]] = Field(None, description="Restrict to these time slots (omit for all)")


class WaiverApplyRequest(WaiverFilter):
    """Request body for applying a previewed waiver"""
    reason: str = Field(..., description="Why the deductions are waived (required)")
    preview_token: str = Field(..., min_length=1, description="Token returned by the preview call")
    applied_by: Optional[str] = Field(None, max_length=255)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        return v.strip()


class WaiverRecord(BaseModel):
    """A deduction record matched by a waiver filter"""
    record_id: int
    record_type: str
    teacher_id: int
    teacher_name: Optional[str] = None
    student_id: Optional[int] = None
    date: date
    time_slot: Optional[str] = None
    deduction: Decimal
    details: Optional[str] = None


class WaiverTeacherSubtotal(BaseModel):
    teacher_id: int
    teacher_name: Optional[str] = None
    records: int
    amount: Decimal


class WaiverSummary(BaseModel):
    total_records: int
    total_amount: Decimal
    affected_teachers: int
    by_teacher: List[WaiverTeacherSubtotal] = []


class WaiverPreview(BaseModel):
    """Dry-run result; preview_token must be passed back to apply"""
    adjustment_type: AdjustmentType
    records: List[WaiverRecord] = []
    summary: WaiverSummary
    preview_token: str


class WaiverApplyResult(BaseModel):
    """Outcome of an applied waiver"""
    audit_id: int
    records_affected: int
    amount_waived: Decimal
    affected_teachers: int


class WaiverAuditResponse(BaseModel):
    """Stored waiver audit row"""
    id: int
    adjustment_type: str
    start_date: date
    end_date: date
    teacher_ids: List[int]
    time_slots: Optional[List[str]] = None
    reason: str
    applied_by: Optional[str] = None
    applied_at: datetime
    records_affected: int
    amount_waived: Decimal


# ============================================
# Controller Earnings Schemas
# ============================================

class ControllerEarningsRates(BaseModel):
    """Rates in force for a controller earnings computation"""
    main_base_rate: Decimal
    referral_base_rate: Decimal
    leave_penalty_multiplier: Decimal
    leave_threshold: int = Field(..., ge=0)
    unpaid_penalty_multiplier: Decimal
    referral_bonus_multiplier: Decimal
    target_earnings: Decimal

    model_config = ConfigDict(from_attributes=True)


class ControllerEarnings(BaseModel):
    """Earnings and cohort metrics for one controller and period"""
    controller_id: int
    controller_name: str
    period: str

    # Student counts
    active_students: int
    not_yet_students: int
    leave_students_this_period: int
    ramadan_leave_students: int
    paid_this_period: int
    unpaid_active_this_period: int
    referenced_active_students: int
    linked_students: int

    # Earnings
    base_earnings: Decimal
    leave_penalty: Decimal
    unpaid_penalty: Decimal
    referral_bonus: Decimal
    total_earnings: Decimal

    # Performance
    target_earnings: Decimal
    achievement_percentage: Decimal
    growth_rate: Decimal

    # History
    previous_period_earnings: Decimal
    year_to_date_earnings: Decimal


class ControllerEarningsBatch(BaseModel):
    period: str
    rates: ControllerEarningsRates
    results: List[ControllerEarnings] = []
    failures: List[BatchFailure] = []
