"""Consistency checks for a parking space, used after forced removals."""

import logging
from collections import Counter, defaultdict
from typing import List

from sqlmodel import Session as DbSession, select

from .availability import overlaps
from .models import ACTIVE_STATUSES, Reservation
from .slots import list_slots
from .spaces import get_space

logger = logging.getLogger("Audit")


def audit_space(db: DbSession, space_id: str) -> List[dict]:
    space = get_space(db, space_id)
    ordinals = [s.ordinal for s in list_slots(db, space_id)]
    issues = []

    for ordinal, count in Counter(ordinals).items():
        if count > 1:
            issues.append({"issue": "duplicate_ordinal", "ordinal": ordinal})
    missing = sorted(set(range(1, max(ordinals, default=0) + 1)) - set(ordinals))
    for ordinal in missing:
        issues.append({"issue": "ordinal_gap", "ordinal": ordinal})
    if space.slot_count != len(ordinals):
        issues.append({"issue": "slot_count_mismatch", "recorded": space.slot_count, "actual": len(ordinals)})

    reservations = db.exec(select(Reservation).where(Reservation.space_id == space_id)).all()
    active_by_slot = defaultdict(list)
    for r in reservations:
        if r.slot_ordinal is None:
            continue
        if r.slot_ordinal not in ordinals:
            issues.append({"issue": "dangling_reservation", "reservation_id": r.id, "ordinal": r.slot_ordinal})
        if r.status in ACTIVE_STATUSES:
            active_by_slot[r.slot_ordinal].append(r)

    for ordinal, rows in active_by_slot.items():
        rows.sort(key=lambda r: r.start_time)
        for i, a in enumerate(rows):
            for b in rows[i + 1:]:
                if overlaps(a.start_time, a.end_time, b.start_time, b.end_time):
                    issues.append({"issue": "overlapping_reservations", "ordinal": ordinal,
                                   "reservation_ids": [a.id, b.id]})

    if issues:
        logger.warning(f"Space {space_id}: {len(issues)} consistency issue(s)")
    return issues


def resync_slot_count(db: DbSession, space_id: str) -> int:
    space = get_space(db, space_id, lock=True)
    actual = len(list_slots(db, space_id))
    if space.slot_count != actual:
        logger.info(f"Space {space_id}: slot count {space.slot_count} -> {actual}")
        space.slot_count = actual
        db.add(space)
    return actual
