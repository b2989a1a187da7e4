"""
SQLAlchemy models for the compensation engine.
Activity, enrollment and attendance tables are written by external workflows;
the engine reads them and only writes waiver flags, waiver audits and
salary payment status.
"""
from sqlalchemy import (
    Column, Integer, String, Date, DateTime, Text, ForeignKey, DECIMAL, Boolean,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class Teacher(Base):
    """
    Teacher (ustaz) table.
    Salaries are computed per teacher over a closed date range.
    """
    __tablename__ = "teachers"

    id = Column(Integer, primary_key=True, index=True)
    teacher_name = Column(String(255), nullable=False)
    phone = Column(String(100))

    # Relationships
    enrollments = relationship("Enrollment", back_populates="teacher")
    salary_payments = relationship("SalaryPayment", back_populates="teacher")


class Controller(Base):
    """
    Controller (team lead) table.
    A controller owns a cohort of students and is paid on cohort health.
    """
    __tablename__ = "controllers"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(100), nullable=False, unique=True, comment='Referral code')
    controller_name = Column(String(255), nullable=False)

    # Relationships
    enrollments = relationship(
        "Enrollment", back_populates="controller", foreign_keys="[Enrollment.controller_id]"
    )


class Enrollment(Base):
    """
    Enrollment records linking a student to a teacher, a controller and a package.
    Owned by the registration workflow; read-only to the engine.
    """
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, nullable=False, unique=True, index=True)
    student_name = Column(String(255), nullable=False)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), index=True)
    controller_id = Column(Integer, ForeignKey("controllers.id"), index=True)

    # Package and schedule
    package_label = Column(String(255), comment='Free text, matched against package_rates')
    day_pattern = Column(String(50), comment='All days, MWF or TTS')

    # Lifecycle
    status = Column(String(50), nullable=False, default='Not Yet')
    start_date = Column(Date)
    registration_date = Column(Date)

    # Referral tracking
    referred_by_id = Column(Integer, ForeignKey("controllers.id"), comment='Controller whose referral code was used')
    registrar = Column(String(255), comment='Set once the registration workflow claims the referral')

    # Messaging link (counted as "linked" when non-empty)
    chat_id = Column(String(100))

    # Relationships
    teacher = relationship("Teacher", back_populates="enrollments")
    controller = relationship("Controller", back_populates="enrollments", foreign_keys=[controller_id])
    referred_by = relationship("Controller", foreign_keys=[referred_by_id])
    payments = relationship("StudentPayment", back_populates="enrollment")


class TeachingActivityEvent(Base):
    """
    Append-only evidence that a teacher taught a student (per-session link dispatch).
    Several events per student per day are possible; only the earliest counts.
    """
    __tablename__ = "teaching_activity_events"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    student_id = Column(Integer, nullable=False)
    sent_at = Column(DateTime, nullable=False)

    __table_args__ = (
        Index('idx_activity_teacher_sent', 'teacher_id', 'sent_at'),
    )


class PackageRate(Base):
    """Monthly teacher salary per student for a package."""
    __tablename__ = "package_rates"

    id = Column(Integer, primary_key=True, index=True)
    package_label = Column(String(255), nullable=False, unique=True)
    monthly_salary = Column(DECIMAL(10, 2), nullable=False)


class PackageDeduction(Base):
    """Package-specific base amounts used when freezing absence deductions."""
    __tablename__ = "package_deductions"

    id = Column(Integer, primary_key=True, index=True)
    package_label = Column(String(255), nullable=False, unique=True)
    lateness_base_amount = Column(DECIMAL(10, 2), default=0.00)
    absence_base_amount = Column(DECIMAL(10, 2), default=0.00)


class LatenessTier(Base):
    """
    Lateness tier: minutes in [start_minute, end_minute) cost percent of the daily rate.
    Ranges are non-overlapping by configuration contract.
    """
    __tablename__ = "lateness_tiers"

    id = Column(Integer, primary_key=True, index=True)
    start_minute = Column(Integer, nullable=False)
    end_minute = Column(Integer, nullable=False)
    percent = Column(DECIMAL(5, 2), nullable=False)


class Setting(Base):
    """Key/value business settings (Sunday inclusion, thresholds, defaults)."""
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String(100), nullable=False, unique=True)
    value = Column(Text)


class LatenessRecord(Base):
    """
    Lateness submitted by the attendance process.
    The deduction is frozen at intake; `waived` flips only through a waiver.
    """
    __tablename__ = "lateness_records"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    student_id = Column(Integer, nullable=False)
    class_date = Column(Date, nullable=False)
    time_slot = Column(String(50))
    scheduled_time = Column(DateTime, nullable=False)
    actual_time = Column(DateTime, nullable=False)
    minutes_late = Column(Integer, nullable=False)
    tier_label = Column(String(100))
    deduction = Column(DECIMAL(10, 2), nullable=False, default=0.00)
    waived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_lateness_teacher_date', 'teacher_id', 'class_date'),
    )


class AbsenceRecord(Base):
    """
    Teacher absence for a class date.
    `permitted` is set by the permission review workflow and overrides the deduction.
    """
    __tablename__ = "absence_records"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    student_id = Column(Integer)
    class_date = Column(Date, nullable=False)
    time_slot = Column(String(50))
    permitted = Column(Boolean, nullable=False, default=False)
    deduction_applied = Column(DECIMAL(10, 2), nullable=False, default=0.00)
    reason_category = Column(String(100))
    waived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=func.now())

    __table_args__ = (
        Index('idx_absence_teacher_date', 'teacher_id', 'class_date'),
    )


class BonusRecord(Base):
    """Discretionary bonus awarded to a teacher."""
    __tablename__ = "bonus_records"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    awarded_on = Column(Date, nullable=False)
    amount = Column(DECIMAL(10, 2), nullable=False)
    reason = Column(String(500))


class StudentPayment(Base):
    """Student monthly payment or deposit (paid, free month, pending...)."""
    __tablename__ = "student_payments"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("enrollments.student_id"), nullable=False, index=True)
    paid_on = Column(Date, nullable=False)
    month = Column(String(7), comment='Billing month YYYY-MM')
    status = Column(String(20), nullable=False, default='pending')
    amount = Column(DECIMAL(10, 2), default=0.00)

    # Relationships
    enrollment = relationship("Enrollment", back_populates="payments")


class SalaryPayment(Base):
    """
    Salary payment status for a teacher and period (YYYY-MM).
    Exactly one row per (teacher_id, period).
    """
    __tablename__ = "salary_payments"

    id = Column(Integer, primary_key=True, index=True)
    teacher_id = Column(Integer, ForeignKey("teachers.id"), nullable=False)
    period = Column(String(7), nullable=False)
    status = Column(String(20), nullable=False, default='Unpaid')
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('teacher_id', 'period', name='uq_salary_payment_teacher_period'),
    )

    # Relationships
    teacher = relationship("Teacher", back_populates="salary_payments")


class DeductionWaiverAudit(Base):
    """
    Append-only audit row written once per applied waiver.
    """
    __tablename__ = "deduction_waiver_audits"

    id = Column(Integer, primary_key=True, index=True)
    adjustment_type = Column(String(50), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    teacher_ids = Column(Text, nullable=False, comment='JSON list of teacher ids')
    time_slots = Column(Text, comment='JSON list of time slot labels, NULL = all')
    reason = Column(Text, nullable=False)
    applied_by = Column(String(255))
    applied_at = Column(DateTime, default=func.now(), nullable=False)
    records_affected = Column(Integer, nullable=False, default=0)
    amount_waived = Column(DECIMAL(12, 2), nullable=False, default=0.00)


class ControllerEarningsConfig(Base):
    """
    Controller earnings rates. The latest active row effective on the
    period is the one in force.
    """
    __tablename__ = "controller_earnings_configs"

    id = Column(Integer, primary_key=True, index=True)
    main_base_rate = Column(DECIMAL(10, 2), nullable=False)
    referral_base_rate = Column(DECIMAL(10, 2), nullable=False)
    leave_penalty_multiplier = Column(DECIMAL(6, 2), nullable=False)
    leave_threshold = Column(Integer, nullable=False)
    unpaid_penalty_multiplier = Column(DECIMAL(6, 2), nullable=False)
    referral_bonus_multiplier = Column(DECIMAL(6, 2), nullable=False)
    target_earnings = Column(DECIMAL(12, 2), nullable=False)
    effective_from = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
