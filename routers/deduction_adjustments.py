"""
Deduction adjustment (waiver) API endpoints.

The flow is two calls: POST /preview returns the matched records and a
preview_token; POST with the same filter, a reason and that token applies it.
"""
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas import (
    WaiverApplyRequest,
    WaiverApplyResult,
    WaiverAuditResponse,
    WaiverFilter,
    WaiverPreview,
)
from services.waivers import WaiverEngine, WaiverRequest

router = APIRouter()


@router.post("/deduction-adjustments/preview", response_model=WaiverPreview)
async def preview_adjustment(
    waiver: WaiverFilter,
    db: Session = Depends(get_db),
):
    """Dry run of a waiver. Nothing is changed."""
    request = WaiverRequest(
        waiver.adjustment_type, waiver.start_date, waiver.end_date, waiver.teacher_ids, waiver.time_slots
    )
    return WaiverEngine(db).preview(request)


@router.post("/deduction-adjustments", response_model=WaiverApplyResult)
async def apply_adjustment(
    waiver: WaiverApplyRequest,
    db: Session = Depends(get_db),
):
    """
    Apply a previewed waiver.

    Records are re-matched at apply time, so the counts may differ from the
    preview if attendance data changed in between.
    """
    request = WaiverRequest.resume(
        waiver.preview_token,
        waiver.adjustment_type, waiver.start_date, waiver.end_date, waiver.teacher_ids, waiver.time_slots,
    )
    return WaiverEngine(db).apply(request, waiver.reason, applied_by=waiver.applied_by)


@router.get("/deduction-adjustments", response_model=List[WaiverAuditResponse])
async def list_adjustments(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    """Applied waivers, most recent first."""
    return WaiverEngine(db).list_audits(limit=limit, offset=offset)
