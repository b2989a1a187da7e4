"""
Deduction waivers (adjustments).

A waiver retroactively nullifies lateness or absence deductions for a set of
teachers over a date range, optionally restricted to time slots. Waived
records are flagged, never deleted, and every applied waiver leaves one audit
row.

Lifecycle of a WaiverRequest:

    Requested --preview()--> Previewed --apply(reason)--> Applied

apply() is refused unless the request was previewed with the same filter.
Over HTTP the preview returns a signed, expiring token bound to the filter
fingerprint that the apply call must send back; WaiverRequest.resume()
verifies it and rebuilds a previewed request.

apply() re-runs the match inside its transaction and flips the flags with a
guarded UPDATE (... WHERE waived = false). If the guarded update touches
fewer rows than were matched, a concurrent waiver won part of the race: the
transaction is rolled back and the match-and-flip retried. Already-waived
records never match, so repeating a waiver is a no-op.
"""
import hashlib
import json
import logging
from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from constants import AdjustmentType, WaiverState, WAIVER_APPLY_MAX_ATTEMPTS
from models import AbsenceRecord, DeductionWaiverAudit, LatenessRecord, Teacher
from schemas import (
    WaiverApplyResult,
    WaiverAuditResponse,
    WaiverPreview,
    WaiverRecord,
    WaiverSummary,
    WaiverTeacherSubtotal,
)
from services.deductions import AbsenceDeductionCalculator, LatenessDeductionCalculator
from services.exceptions import (
    ConcurrencyConflict,
    InvalidWaiverRequest,
    WaiverStateError,
    data_access,
)
from services.proration import ZERO, to_money
from services.salary_config import SalaryCalculationConfig, load_salary_config
from utils.preview_tokens import create_preview_token, verify_preview_token

logger = logging.getLogger(__name__)


class WaiverRequest:
    """A waiver filter and where it stands in the Requested -> Previewed -> Applied lifecycle."""

    def __init__(
        self,
        adjustment_type,
        start_date: date,
        end_date: date,
        teacher_ids: Sequence[int],
        time_slots: Optional[Sequence[str]] = None,
    ):
        try:
            self.adjustment_type = AdjustmentType(adjustment_type)
        except ValueError:
            raise InvalidWaiverRequest(f"Unknown adjustment type {adjustment_type!r}")
        self.start_date = start_date
        self.end_date = end_date
        self.teacher_ids = sorted(set(teacher_ids or []))
        self.time_slots = sorted(set(time_slots)) if time_slots else None
        self.state = WaiverState.REQUESTED
        self.token: Optional[str] = None
        self.preview: Optional[WaiverPreview] = None
        self.result: Optional[WaiverApplyResult] = None
        self.validate()

    def validate(self) -> None:
        """Reject empty or inverted filters before anything is read."""
        if self.start_date is None or self.end_date is None:
            raise InvalidWaiverRequest("Date range is required")
        if self.start_date > self.end_date:
            raise InvalidWaiverRequest("Date range start must not be after its end")
        if not self.teacher_ids:
            raise InvalidWaiverRequest("At least one teacher is required")

    @property
    def fingerprint(self) -> str:
        canonical = json.dumps({
            "adjustment_type": self.adjustment_type.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "teacher_ids": self.teacher_ids,
            "time_slots": self.time_slots,
        }, sort_keys=True)
        return hashlib.sha256(f"waiver-preview:{canonical}".encode()).hexdigest()

    @classmethod
    def resume(
        cls,
        preview_token: str,
        adjustment_type,
        start_date: date,
        end_date: date,
        teacher_ids: Sequence[int],
        time_slots: Optional[Sequence[str]] = None,
    ) -> "WaiverRequest":
        """Rebuild a previewed request from the token a preview call returned."""
        request = cls(adjustment_type, start_date, end_date, teacher_ids, time_slots)
        fingerprint = verify_preview_token(preview_token) if preview_token else None
        if fingerprint is None:
            raise WaiverStateError("Preview token is invalid or expired; preview the waiver again")
        if fingerprint != request.fingerprint:
            raise WaiverStateError("Waiver must be previewed with the same filter before it is applied")
        request.token = preview_token
        request.state = WaiverState.PREVIEWED
        return request


class WaiverEngine:
    """Preview, apply and audit deduction waivers."""

    def __init__(
        self,
        db: Session,
        config: Optional[SalaryCalculationConfig] = None,
        max_attempts: int = WAIVER_APPLY_MAX_ATTEMPTS,
    ):
        self.db = db
        self._config = config
        self._lateness_calculator: Optional[LatenessDeductionCalculator] = None
        self.max_attempts = max(1, max_attempts)
        self.absence_calculator = AbsenceDeductionCalculator()

    @property
    def config(self) -> SalaryCalculationConfig:
        # Loaded on first match, after the request has been validated
        if self._config is None:
            self._config = load_salary_config(self.db)
        return self._config

    @property
    def lateness_calculator(self) -> LatenessDeductionCalculator:
        if self._lateness_calculator is None:
            self._lateness_calculator = LatenessDeductionCalculator.from_config(self.config)
        return self._lateness_calculator

    # ============================================
    # Preview (read-only)
    # ============================================

    def preview(self, request: WaiverRequest) -> WaiverPreview:
        """Dry run: matched records, per-teacher subtotals and grand total. Nothing is written."""
        if request.state == WaiverState.APPLIED:
            raise WaiverStateError("Waiver request was already applied")

        matched = self._match(request)
        names = self._teacher_names(request.teacher_ids)
        records = [self._to_waiver_record(request.adjustment_type, r, amount, names) for r, amount in matched]

        request.token = create_preview_token(request.fingerprint)
        preview = WaiverPreview(
            adjustment_type=request.adjustment_type,
            records=records,
            summary=self._summarize(records, names),
            preview_token=request.token,
        )
        request.preview = preview
        request.state = WaiverState.PREVIEWED

        logger.info(
            "waiver_previewed type=%s from=%s to=%s teachers=%s records=%s amount=%s",
            request.adjustment_type.value, request.start_date, request.end_date,
            request.teacher_ids, preview.summary.total_records, preview.summary.total_amount,
        )
        return preview

    # ============================================
    # Apply (read-write, atomic)
    # ============================================

    def apply(self, request: WaiverRequest, reason: str, applied_by: Optional[str] = None) -> WaiverApplyResult:
        """
        Waive every currently matching record and write one audit row, atomically.

        Zero matches is a successful no-op (the audit row records zero).
        Raises ConcurrencyConflict if competing waivers win every attempt.
        """
        if not reason or not reason.strip():
            raise InvalidWaiverRequest("A reason is required to apply a waiver")
        if request.state != WaiverState.PREVIEWED:
            raise WaiverStateError(
                f"Waiver must be previewed before it is applied (state: {request.state.value})"
            )

        model = self._model(request.adjustment_type)
        for attempt in range(1, self.max_attempts + 1):
            with data_access("apply waiver"):
                try:
                    matched = self._match(request, lock=True)
                    ids = [record.id for record, _ in matched]
                    amount = to_money(sum((a for _, a in matched), ZERO))

                    if ids:
                        flipped = self.db.execute(
                            update(model)
                            .where(model.id.in_(ids), model.waived.is_(False))
                            .values(waived=True)
                            .execution_options(synchronize_session=False)
                        ).rowcount
                        if flipped != len(ids):
                            self.db.rollback()
                            logger.warning(
                                "waiver_conflict attempt=%s matched=%s flipped=%s", attempt, len(ids), flipped
                            )
                            continue

                    audit = DeductionWaiverAudit(
                        adjustment_type=request.adjustment_type.value,
                        start_date=request.start_date,
                        end_date=request.end_date,
                        teacher_ids=json.dumps(request.teacher_ids),
                        time_slots=json.dumps(request.time_slots) if request.time_slots else None,
                        reason=reason.strip(),
                        applied_by=applied_by,
                        records_affected=len(ids),
                        amount_waived=amount,
                    )
                    self.db.add(audit)
                    self.db.commit()
                except Exception:
                    self.db.rollback()
                    raise

            affected_teachers = len({record.teacher_id for record, _ in matched})
            result = WaiverApplyResult(
                audit_id=audit.id,
                records_affected=len(ids),
                amount_waived=amount,
                affected_teachers=affected_teachers,
            )
            request.result = result
            request.state = WaiverState.APPLIED

            logger.info(
                "waiver_applied audit=%s type=%s from=%s to=%s teachers=%s records=%s amount=%s by=%s",
                audit.id, request.adjustment_type.value, request.start_date, request.end_date,
                request.teacher_ids, len(ids), amount, applied_by,
            )
            return result

        raise ConcurrencyConflict(
            f"Waiver could not be applied after {self.max_attempts} attempts; overlapping waivers are in progress"
        )

    # ============================================
    # Audit history
    # ============================================

    def list_audits(self, limit: int = 50, offset: int = 0) -> List[WaiverAuditResponse]:
        with data_access("list waiver audits"):
            rows = (
                self.db.query(DeductionWaiverAudit)
                .order_by(DeductionWaiverAudit.applied_at.desc(), DeductionWaiverAudit.id.desc())
                .offset(offset)
                .limit(limit)
                .all()
            )
        return [
            WaiverAuditResponse(
                id=row.id,
                adjustment_type=row.adjustment_type,
                start_date=row.start_date,
                end_date=row.end_date,
                teacher_ids=json.loads(row.teacher_ids),
                time_slots=json.loads(row.time_slots) if row.time_slots else None,
                reason=row.reason,
                applied_by=row.applied_by,
                applied_at=row.applied_at,
                records_affected=row.records_affected,
                amount_waived=to_money(row.amount_waived),
            )
            for row in rows
        ]

    # ============================================
    # Matching
    # ============================================

    @staticmethod
    def _model(adjustment_type: AdjustmentType):
        if adjustment_type == AdjustmentType.WAIVE_LATENESS:
            return LatenessRecord
        return AbsenceRecord

    def _match(self, request: WaiverRequest, lock: bool = False) -> List[Tuple[object, Decimal]]:
        """Non-waived records under the filter that currently carry a deduction, with that amount."""
        model = self._model(request.adjustment_type)
        query = self.db.query(model).filter(
            model.teacher_id.in_(request.teacher_ids),
            model.class_date >= request.start_date,
            model.class_date <= request.end_date,
            model.waived.is_(False),
        )
        if model is AbsenceRecord:
            query = query.filter(AbsenceRecord.permitted.is_(False))
        if request.time_slots:
            query = query.filter(model.time_slot.in_(request.time_slots))
        if lock:
            query = query.with_for_update()

        with data_access("match waiver records"):
            rows = query.order_by(model.teacher_id, model.class_date, model.id).all()

        if model is LatenessRecord:
            effective = self.lateness_calculator.effective_deduction
        else:
            effective = self.absence_calculator.effective_deduction

        matched = []
        for row in rows:
            amount = effective(row)
            if amount > 0:
                matched.append((row, amount))
        return matched

    def _teacher_names(self, teacher_ids: Sequence[int]) -> Dict[int, str]:
        with data_access("load teacher names"):
            rows = self.db.query(Teacher).filter(Teacher.id.in_(teacher_ids)).all()
        return {t.id: t.teacher_name for t in rows}

    @staticmethod
    def _to_waiver_record(adjustment_type: AdjustmentType, record, amount: Decimal, names: Dict[int, str]) -> WaiverRecord:
        if adjustment_type == AdjustmentType.WAIVE_LATENESS:
            record_type = "Lateness"
            details = f"{record.minutes_late} min late"
            if record.tier_label:
                details += f", {record.tier_label}"
        else:
            record_type = "Absence"
            details = "Unpermitted absence"
            if record.reason_category:
                details += f" ({record.reason_category})"
        return WaiverRecord(
            record_id=record.id,
            record_type=record_type,
            teacher_id=record.teacher_id,
            teacher_name=names.get(record.teacher_id),
            student_id=record.student_id,
            date=record.class_date,
            time_slot=record.time_slot,
            deduction=amount,
            details=details,
        )

    @staticmethod
    def _summarize(records: List[WaiverRecord], names: Dict[int, str]) -> WaiverSummary:
        by_teacher: "OrderedDict[int, List[WaiverRecord]]" = OrderedDict()
        for record in records:
            by_teacher.setdefault(record.teacher_id, []).append(record)

        subtotals = [
            WaiverTeacherSubtotal(
                teacher_id=teacher_id,
                teacher_name=names.get(teacher_id),
                records=len(items),
                amount=to_money(sum((r.deduction for r in items), ZERO)),
            )
            for teacher_id, items in by_teacher.items()
        ]
        return WaiverSummary(
            total_records=len(records),
            total_amount=to_money(sum((r.deduction for r in records), ZERO)),
            affected_teachers=len(subtotals),
            by_teacher=subtotals,
        )
