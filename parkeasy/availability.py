from datetime import datetime
from typing import List, Optional

from sqlmodel import Session as DbSession, select

from .models import ACTIVE_STATUSES, Reservation
from .slots import SlotRef, get_slot


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap: [a) and [b) touching at a boundary do not overlap."""
    return start_a < end_b and end_a > start_b


def active_reservations(db: DbSession, ref: SlotRef) -> List[Reservation]:
    return list(db.exec(
        select(Reservation).where(
            Reservation.space_id == ref.space_id,
            Reservation.slot_ordinal == ref.ordinal,
            Reservation.status.in_(ACTIVE_STATUSES),
        )
    ).all())


def find_conflicts(db: DbSession, ref: SlotRef, start: datetime, end: datetime,
                   exclude_id: Optional[int] = None) -> List[Reservation]:
    return [
        r for r in active_reservations(db, ref)
        if r.id != exclude_id and overlaps(r.start_time, r.end_time, start, end)
    ]


def is_slot_available(db: DbSession, ref: SlotRef, start: datetime, end: datetime,
                      exclude_id: Optional[int] = None) -> bool:
    """True iff the slot exists and no active reservation on it overlaps [start, end)."""
    if end <= start:
        raise ValueError("end must be after start")
    if get_slot(db, ref) is None:
        return False
    return not find_conflicts(db, ref, start, end, exclude_id)
