"""
Controller earnings API endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db, get_session_factory
from schemas import ControllerEarningsBatch
from services.controller_earnings import ControllerEarningsCalculator

router = APIRouter()


@router.get("/controller-earnings", response_model=ControllerEarningsBatch)
async def get_controller_earnings(
    period: str = Query(..., pattern=r"^\d{4}-\d{2}$", description="Period in YYYY-MM format"),
    controller_id: Optional[int] = Query(None, gt=0, description="Single controller (omit for all)"),
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """
    Earnings for every controller in a period, or one when controller_id is given.

    Includes the rates in force, previous-period growth and year-to-date totals.
    """
    calculator = ControllerEarningsCalculator(db, period, session_factory=session_factory)
    batch = calculator.calculate([controller_id] if controller_id is not None else None)
    if controller_id is not None and not batch.results:
        raise HTTPException(status_code=404, detail=batch.failures[0].detail)
    return batch
