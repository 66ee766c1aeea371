import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func
from sqlmodel import Session as DbSession, select

from .availability import is_slot_available
from .errors import ConflictError, ValidationError
from .models import ParkingSlot, ParkingSpace
from .schedule import is_open_for
from .slots import SlotRef, get_slot, list_slots, slot_ref_of

logger = logging.getLogger("Spaces")


def get_space(db: DbSession, space_id: str, lock: bool = False) -> ParkingSpace:
    if lock:
        space = db.exec(select(ParkingSpace).where(ParkingSpace.id == space_id).with_for_update()).first()
    else:
        space = db.get(ParkingSpace, space_id)
    if space is None:
        raise ValidationError("space_not_found", f"Parking space {space_id} not found")
    return space


def create_parking_space(db: DbSession, space_id: str, address: str, hourly_rate: float,
                         slot_count: int, max_duration_hours: Optional[int] = None,
                         description: str = "", owner_admin_id: Optional[int] = None) -> ParkingSpace:
    if not space_id or not space_id.strip() or space_id[0].isdigit() or " " in space_id:
        raise ValidationError("invalid_space_id", "Space id must be non-empty, without spaces, and not start with a digit")
    if not address or not address.strip():
        raise ValidationError("invalid_address", "Address cannot be empty")
    if hourly_rate < 0:
        raise ValidationError("invalid_rate", "Cost cannot be negative")
    if slot_count <= 0:
        raise ValidationError("invalid_slot_count", "Number of slots must be positive")
    if max_duration_hours is not None and max_duration_hours <= 0:
        raise ValidationError("invalid_max_duration", "Maximum duration must be positive")
    if db.get(ParkingSpace, space_id) is not None:
        raise ConflictError("space_exists", f"Parking space {space_id} already exists")

    space = ParkingSpace(
        id=space_id,
        address=address,
        hourly_rate=hourly_rate,
        slot_count=slot_count,
        max_duration_hours=max_duration_hours,
        description=description,
        owner_admin_id=owner_admin_id,
    )
    db.add(space)
    db.flush()
    for i in range(1, slot_count + 1):
        db.add(ParkingSlot(space_id=space_id, ordinal=i, availability=True))
    db.flush()
    logger.info(f"Created parking space {space_id} with {slot_count} slots")
    return space


def add_slot(db: DbSession, space_id: str) -> ParkingSlot:
    """Append a slot after the highest ordinal of the space."""
    space = get_space(db, space_id, lock=True)
    highest = db.exec(select(func.max(ParkingSlot.ordinal)).where(ParkingSlot.space_id == space_id)).one()
    slot = ParkingSlot(space_id=space_id, ordinal=(highest or 0) + 1, availability=True)
    db.add(slot)
    space.slot_count += 1
    db.add(space)
    db.flush()
    logger.info(f"Added slot {slot.ordinal}{space_id}")
    return slot


def set_slot_availability(db: DbSession, ref: SlotRef, availability: bool) -> ParkingSlot:
    slot = get_slot(db, ref)
    if slot is None:
        raise ValidationError("slot_not_found", f"Slot {ref} not found")
    slot.availability = availability
    db.add(slot)
    db.flush()
    return slot


def available_slots_for_range(db: DbSession, space_id: str, start: datetime, end: datetime) -> List[ParkingSlot]:
    """Slots flagged available with no active booking over [start, end) during opening hours."""
    get_space(db, space_id)
    if not is_open_for(db, space_id, start, end):
        logger.info(f"Parking space {space_id} is not open between {start} and {end}")
        return []
    return [
        slot for slot in list_slots(db, space_id)
        if slot.availability and is_slot_available(db, slot_ref_of(slot), start, end)
    ]
