"""Slot removal that keeps a space's ordinals contiguous.

Removing ordinal ``k`` shifts every higher slot of the same space down by one
and re-points the reservations that referenced them, all in one transaction.
While it runs, the space row and every slot row of the space are locked.
"""

import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlalchemy.orm.exc import StaleDataError
from sqlmodel import Session as DbSession, select

from .availability import active_reservations
from .database import unit_of_work
from .errors import BookingError, ConflictError, IntegrityViolation, OpResult, ValidationError
from .models import ParkingSpace, Reservation
from .slots import SlotRef, as_slot_ref, list_slots, lock_slot
from .spaces import get_space

logger = logging.getLogger("Renumbering")


def plan_renumbering(ordinals: Iterable[int], removed: int) -> Dict[int, int]:
    """Map every ordinal above ``removed`` to the ordinal one below it."""
    return {old: old - 1 for old in ordinals if old > removed}


def _flush(db: DbSession):
    try:
        db.flush()
    except StaleDataError as e:
        raise IntegrityViolation("missing_row", f"Expected row disappeared during renumbering: {e}") from e


def _reservations_by_ordinal(db: DbSession, space_id: str, ordinals: List[int]) -> Dict[int, List[Reservation]]:
    rows = db.exec(
        select(Reservation).where(
            Reservation.space_id == space_id,
            Reservation.slot_ordinal.in_(ordinals),
        )
    ).all()
    grouped = defaultdict(list)
    for r in rows:
        grouped[r.slot_ordinal].append(r)
    return grouped


def _decrement_slot_count(db: DbSession, space: ParkingSpace):
    space.slot_count -= 1
    db.add(space)


class SlotRenumberer:
    def __init__(self, db_engine: Optional[Engine] = None):
        self.engine = db_engine

    def remove_slot_with_renumbering(self, slot: Union[str, SlotRef]) -> OpResult:
        try:
            ref = as_slot_ref(slot)
            with unit_of_work(self.engine) as db:
                renamed = self._remove_and_renumber(db, ref)
        except BookingError as e:
            logger.warning(f"Removal of slot {slot} failed: {e.reason} - {e.message}")
            return OpResult.failure(e)

        logger.info(f"Removed slot {ref}; renumbered {len(renamed)} slots")
        return OpResult.success("Slot removed successfully", removed=ref.token,
                                renamed={SlotRef(old, ref.space_id).token: SlotRef(new, ref.space_id).token
                                         for old, new in renamed.items()})

    def force_remove(self, slot: Union[str, SlotRef]) -> OpResult:
        """Operator recovery: delete the slot row only.

        No reservation check, no renumbering and no slot-count update. The
        space is left with a gap until an operator repairs it.
        """
        try:
            ref = as_slot_ref(slot)
            with unit_of_work(self.engine) as db:
                target = lock_slot(db, ref)
                if target is None:
                    raise ValidationError("slot_not_found", f"Slot {ref} not found")
                db.delete(target)
        except BookingError as e:
            logger.warning(f"Forced removal of slot {slot} failed: {e.reason} - {e.message}")
            return OpResult.failure(e)

        logger.warning(f"Slot {ref} FORCE-REMOVED without renumbering; audit space {ref.space_id}")
        return OpResult.success("Slot force-removed; ordinals were not renumbered", removed=ref.token)

    def _remove_and_renumber(self, db: DbSession, ref: SlotRef) -> Dict[int, int]:
        space = get_space(db, ref.space_id, lock=True)
        slots = list_slots(db, ref.space_id, lock=True)
        by_ordinal = {s.ordinal: s for s in slots}

        target = by_ordinal.get(ref.ordinal)
        if target is None:
            raise ValidationError("slot_not_found", f"Slot {ref} not found")
        if active_reservations(db, ref):
            raise ConflictError("active_reservations", f"Slot {ref} has active reservations")
        if space.slot_count != len(slots):
            logger.warning(f"Space {space.id} records {space.slot_count} slots but has {len(slots)}")

        renames = plan_renumbering(by_ordinal, ref.ordinal)
        targets = set(renames.values())
        # References are captured by id before any write so a rename can't be re-applied
        affected = _reservations_by_ordinal(db, ref.space_id, [ref.ordinal, *renames, *targets])

        # Targets left without a slot row by a forced removal must be unreferenced
        for new in sorted(targets - set(by_ordinal)):
            if affected.get(new):
                raise IntegrityViolation(
                    "rename_collision",
                    f"Reservations {[r.id for r in affected[new]]} reference missing slot {new}{ref.space_id}",
                )

        for reservation in affected.get(ref.ordinal, []):
            reservation.slot_ordinal = None
            db.add(reservation)
        db.delete(target)
        _flush(db)

        occupied = set(by_ordinal) - {ref.ordinal}
        # Lowest first: the removed ordinal is already free, and each rename frees the next target
        for old in sorted(renames):
            new = renames[old]
            if new in occupied:
                raise IntegrityViolation("rename_collision",
                                         f"Cannot rename {old}{ref.space_id} to occupied ordinal {new}")
            row = by_ordinal[old]
            row.ordinal = new
            db.add(row)
            for reservation in affected.get(old, []):
                reservation.slot_ordinal = new
                db.add(reservation)
            _flush(db)
            occupied.discard(old)
            occupied.add(new)

        _decrement_slot_count(db, space)
        _flush(db)
        return renames
