"""
Teacher payments API endpoints.
Salary breakdowns per teacher over a date range, and payment status per period.
"""
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db, get_session_factory
from schemas import (
    PaymentStatusUpdate,
    SalaryPaymentResponse,
    TeacherSalaryBatch,
    TeacherSalaryBreakdown,
)
from services.salary import SalaryCalculator, set_payment_status

router = APIRouter()


@router.get("/teacher-payments", response_model=TeacherSalaryBatch)
async def list_teacher_payments(
    from_date: date = Query(..., description="Window start (inclusive)"),
    to_date: date = Query(..., description="Window end (inclusive)"),
    teacher_id: Optional[List[int]] = Query(None, description="Restrict to these teachers"),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """
    Salary breakdowns for all teachers (or the given ones).

    Unknown teacher ids are listed under `failures` instead of failing the request.
    A window with no working days yields zero salaries flagged `invalid_window`.
    """
    calculator = SalaryCalculator(db, session_factory=session_factory)
    return calculator.compute_teacher_salaries(from_date, to_date, teacher_ids=teacher_id)


@router.get("/teacher-payments/{teacher_id}", response_model=TeacherSalaryBreakdown)
async def get_teacher_payment(
    teacher_id: int,
    from_date: date = Query(..., description="Window start (inclusive)"),
    to_date: date = Query(..., description="Window end (inclusive)"),
    db: Session = Depends(get_db),
):
    """Full salary breakdown for one teacher."""
    return SalaryCalculator(db).compute_teacher_salary(teacher_id, from_date, to_date)


@router.put("/teacher-payments/{teacher_id}/status", response_model=SalaryPaymentResponse)
async def update_payment_status(
    teacher_id: int,
    update: PaymentStatusUpdate,
    db: Session = Depends(get_db),
):
    """Mark a teacher's salary for a period as Paid or Unpaid."""
    return set_payment_status(db, teacher_id, update.period, update.status)
