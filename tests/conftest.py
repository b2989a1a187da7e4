"""
Pytest fixtures for backend tests.

Usage:
    pytest tests/ --cov=. --cov-report=html
"""
import os
import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Generator

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment before importing app modules
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from database import Base, get_db, get_session_factory
from main import app
from models import (
    AbsenceRecord,
    BonusRecord,
    Controller,
    Enrollment,
    LatenessRecord,
    LatenessTier,
    PackageRate,
    Setting,
    Teacher,
    TeachingActivityEvent,
)


# In-memory SQLite for fast tests (no external DB dependency)
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a fresh database session for each test.
    Tables are created before and dropped after each test.
    """
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """
    FastAPI test client with overridden database dependencies.
    Batch endpoints get no session factory, so they compute inline on the test session.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: None

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def add_activity(db_session: Session):
    """Factory adding one activity event per date at the given hour."""
    def _add(teacher_id: int, student_id: int, days, hour: int = 9) -> None:
        for day in days:
            db_session.add(TeachingActivityEvent(
                teacher_id=teacher_id,
                student_id=student_id,
                sent_at=datetime(day.year, day.month, day.day, hour, 0),
            ))
        db_session.commit()
    return _add


@pytest.fixture
def salary_config(db_session: Session) -> None:
    """Package rates, lateness tiers and settings used across salary tests."""
    db_session.add_all([
        PackageRate(package_label="3 Days Package", monthly_salary=Decimal("3000.00")),
        PackageRate(package_label="Europe", monthly_salary=Decimal("1500.00")),
        LatenessTier(start_minute=4, end_minute=10, percent=Decimal("10")),
        LatenessTier(start_minute=10, end_minute=20, percent=Decimal("25")),
        LatenessTier(start_minute=20, end_minute=60, percent=Decimal("50")),
        Setting(key="include_sundays", value="false"),
        Setting(key="lateness_excused_threshold", value="3"),
    ])
    db_session.commit()


@pytest.fixture
def sample_teacher(db_session: Session) -> Teacher:
    teacher = Teacher(id=1, teacher_name="Ustaz Ahmed", phone="0911000000")
    db_session.add(teacher)
    db_session.commit()
    return teacher


@pytest.fixture
def sample_controller(db_session: Session) -> Controller:
    controller = Controller(id=1, code="CTRL-01", controller_name="Hanan")
    db_session.add(controller)
    db_session.commit()
    return controller


@pytest.fixture
def sample_enrollment(db_session: Session, sample_teacher: Teacher, sample_controller: Controller) -> Enrollment:
    enrollment = Enrollment(
        student_id=101,
        student_name="Test Student",
        teacher_id=sample_teacher.id,
        controller_id=sample_controller.id,
        package_label="3 Days Package",
        day_pattern="All days",
        status="Active",
        start_date=date(2026, 1, 5),
        registration_date=date(2026, 1, 2),
    )
    db_session.add(enrollment)
    db_session.commit()
    return enrollment


@pytest.fixture
def make_lateness(db_session: Session):
    """Factory for lateness records with an explicit frozen deduction."""
    def _make(teacher_id: int, class_date: date, deduction: str, minutes_late: int = 12,
              student_id: int = 101, time_slot: str = "09:00", waived: bool = False) -> LatenessRecord:
        scheduled = datetime(class_date.year, class_date.month, class_date.day, 9, 0)
        record = LatenessRecord(
            teacher_id=teacher_id,
            student_id=student_id,
            class_date=class_date,
            time_slot=time_slot,
            scheduled_time=scheduled,
            actual_time=scheduled + timedelta(minutes=minutes_late),
            minutes_late=minutes_late,
            tier_label="Tier 2 (25%)",
            deduction=Decimal(deduction),
            waived=waived,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_absence(db_session: Session):
    """Factory for absence records."""
    def _make(teacher_id: int, class_date: date, deduction: str, permitted: bool = False,
              student_id: int = 101, time_slot: str = "09:00", waived: bool = False) -> AbsenceRecord:
        record = AbsenceRecord(
            teacher_id=teacher_id,
            student_id=student_id,
            class_date=class_date,
            time_slot=time_slot,
            permitted=permitted,
            deduction_applied=Decimal(deduction),
            reason_category="Sick",
            waived=waived,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_bonus(db_session: Session):
    def _make(teacher_id: int, awarded_on: date, amount: str, reason: str = "Quran competition") -> BonusRecord:
        record = BonusRecord(teacher_id=teacher_id, awarded_on=awarded_on, amount=Decimal(amount), reason=reason)
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def file_session_factory(tmp_path):
    """
    Session factory over a file-backed SQLite database.
    Each batch worker gets its own connection, unlike the shared in-memory one above.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'compensation.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()
