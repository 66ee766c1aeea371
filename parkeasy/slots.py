"""Slot identity and slot registry lookups.

A slot is identified by ``(ordinal, space_id)``. The compact token used by
clients (``"5P66"`` for ordinal 5 of space ``P66``) is only produced and parsed
here, at the edge.
"""

import re
from typing import List, NamedTuple, Optional, Union

from sqlmodel import Session as DbSession, select

from .errors import ValidationError
from .models import ParkingSlot

TOKEN_PATTERN = re.compile(r"^(\d+)([^\d\s]\S*)$")


class SlotRef(NamedTuple):
    ordinal: int
    space_id: str

    @property
    def token(self) -> str:
        return format_token(self)

    def __str__(self) -> str:
        return self.token


def format_token(ref: SlotRef) -> str:
    return f"{ref.ordinal}{ref.space_id}"


def parse_token(token: str) -> SlotRef:
    match = TOKEN_PATTERN.match(token.strip()) if token else None
    if not match or int(match.group(1)) < 1:
        raise ValidationError("malformed_slot_token", f"Malformed slot token: {token!r}")
    return SlotRef(int(match.group(1)), match.group(2))


def as_slot_ref(slot: Union[str, SlotRef]) -> SlotRef:
    if isinstance(slot, SlotRef):
        return slot
    return parse_token(slot)


def slot_ref_of(slot: ParkingSlot) -> SlotRef:
    return SlotRef(slot.ordinal, slot.space_id)


def _slot_query(ref: SlotRef):
    return select(ParkingSlot).where(
        ParkingSlot.space_id == ref.space_id, ParkingSlot.ordinal == ref.ordinal
    )


def get_slot(db: DbSession, ref: SlotRef) -> Optional[ParkingSlot]:
    return db.exec(_slot_query(ref)).first()


def lock_slot(db: DbSession, ref: SlotRef) -> Optional[ParkingSlot]:
    """Fetch the slot row with a row lock held until the transaction ends."""
    return db.exec(_slot_query(ref).with_for_update()).first()


def list_slots(db: DbSession, space_id: str, lock: bool = False) -> List[ParkingSlot]:
    query = select(ParkingSlot).where(ParkingSlot.space_id == space_id).order_by(ParkingSlot.ordinal)
    if lock:
        query = query.with_for_update()
    return list(db.exec(query).all())


def slot_view(slot: ParkingSlot) -> dict:
    return {
        "slot": format_token(slot_ref_of(slot)),
        "ordinal": slot.ordinal,
        "space_id": slot.space_id,
        "availability": slot.availability,
    }
