"""Bonus totals for a teacher and window (a straight sum, no tiering)."""
from datetime import date

from sqlalchemy.orm import Session

from models import BonusRecord
from schemas import BonusLine, BonusTotals
from services.exceptions import data_access
from services.proration import ZERO, to_money


def calculate_bonuses(db: Session, teacher_id: int, from_date: date, to_date: date) -> BonusTotals:
    with data_access("load bonus records"):
        records = (
            db.query(BonusRecord)
            .filter(
                BonusRecord.teacher_id == teacher_id,
                BonusRecord.awarded_on >= from_date,
                BonusRecord.awarded_on <= to_date,
            )
            .order_by(BonusRecord.awarded_on, BonusRecord.id)
            .all()
        )

    lines = [
        BonusLine(record_id=r.id, date=r.awarded_on, amount=to_money(r.amount), reason=r.reason)
        for r in records
    ]
    total = sum((line.amount for line in lines), ZERO)
    return BonusTotals(lines=lines, total=to_money(total))
