"""Reservation lifecycle: booking, payment, cancellation, completion and extension.

Every mutating method runs inside one ``unit_of_work`` and returns an
``OpResult``. Expected failures (unowned vehicle, busy slot, illegal status
transition) come back as ``ok=False`` results with a machine-checkable
``reason``; they are never raised past the manager.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Union

from sqlalchemy.engine import Engine
from sqlmodel import Session as DbSession, select

from .availability import is_slot_available, overlaps
from .database import unit_of_work
from .directory import vehicle_belongs_to, vehicles_of
from .errors import BookingError, ConflictError, OpResult, ValidationError
from .fees import billable_hours, calculate_fee
from .models import (
    ACTIVE_STATUSES, CANCELLED, COMPLETE, PAID, PROCESSING, ParkingSpace, Reservation, naive_utc, utcnow,
)
from .slots import SlotRef, as_slot_ref, format_token, get_slot, lock_slot
from .spaces import get_space

logger = logging.getLogger("Reservations")

LIST_SCOPES = ("active", "history", "all")


def reservation_slot(reservation: Reservation) -> Optional[SlotRef]:
    if reservation.slot_ordinal is None:
        return None
    return SlotRef(reservation.slot_ordinal, reservation.space_id)


def reservation_view(reservation: Reservation) -> dict:
    ref = reservation_slot(reservation)
    return {
        "id": reservation.id,
        "slot": format_token(ref) if ref else None,
        "space_id": reservation.space_id,
        "vehicle_id": reservation.vehicle_id,
        "start_time": reservation.start_time.isoformat(),
        "end_time": reservation.end_time.isoformat(),
        "status": reservation.status,
        "fee": reservation.fee,
        "created_at": reservation.created_at.isoformat(),
    }


class ReservationManager:
    def __init__(self, db_engine: Optional[Engine] = None, clock: Callable[[], datetime] = utcnow):
        self.engine = db_engine
        self.clock = clock

    # --- queries ---

    def is_slot_available(self, slot: Union[str, SlotRef], start: datetime, end: datetime) -> bool:
        """False for an empty or reversed interval and for tokens that name no slot."""
        start, end = naive_utc(start), naive_utc(end)
        if end <= start:
            return False
        try:
            ref = as_slot_ref(slot)
        except ValidationError:
            return False
        with unit_of_work(self.engine) as db:
            return is_slot_available(db, ref, start, end)

    def get_reservation(self, reservation_id: int, user_id: int) -> OpResult:
        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id)
                space = db.get(ParkingSpace, reservation.space_id)
                details = reservation_view(reservation)
                details["hourly_rate"] = space.hourly_rate if space else None
                details["billable_hours"] = billable_hours(reservation.start_time, reservation.end_time)
            return OpResult.success(**details)
        return self._run("get_reservation", action)

    def list_for_user(self, user_id: int, scope: str = "active") -> List[dict]:
        if scope not in LIST_SCOPES:
            raise ValidationError("invalid_scope", f"Scope must be one of {', '.join(LIST_SCOPES)}")
        now = self._now()
        with unit_of_work(self.engine) as db:
            plates = vehicles_of(db, user_id)
            if not plates:
                return []
            rows = list(db.exec(select(Reservation).where(Reservation.vehicle_id.in_(plates))).all())

        if scope == "active":
            rows = [r for r in rows if r.is_active and r.end_time > now]
            rows.sort(key=lambda r: r.start_time)
        elif scope == "history":
            rows = [r for r in rows if not r.is_active or r.end_time <= now]
            rows.sort(key=lambda r: r.start_time, reverse=True)
        else:
            rows.sort(key=lambda r: r.created_at, reverse=True)
        return [reservation_view(r) for r in rows]

    # --- lifecycle ---

    def create_reservation(self, user_id: int, vehicle_id: str, space_id: str,
                           slot: Union[str, SlotRef], start: datetime, end: datetime) -> OpResult:
        start, end = naive_utc(start), naive_utc(end)

        def action():
            ref = as_slot_ref(slot)
            plate = vehicle_id.strip().upper()
            self._validate_interval(start, end)

            with unit_of_work(self.engine) as db:
                if vehicle_belongs_to(db, plate) != user_id:
                    raise ValidationError("vehicle_not_owned", "You can only make reservations for your own vehicles")
                if ref.space_id != space_id:
                    raise ValidationError("slot_not_found", f"Slot {ref} does not belong to parking space {space_id}")
                space = get_space(db, space_id)
                self._check_max_duration(space, start, end)

                # Held until commit: no other booking of this slot can interleave
                if lock_slot(db, ref) is None:
                    raise ValidationError("slot_not_found", f"Slot {ref} not found")
                if self._vehicle_conflicts(db, plate, start, end):
                    raise ConflictError("vehicle_double_booked", "Vehicle already has an overlapping reservation")
                if not is_slot_available(db, ref, start, end):
                    raise ConflictError("slot_unavailable", "The slot is not available for the selected time period")

                fee = calculate_fee(space.hourly_rate, start, end)
                reservation = Reservation(
                    space_id=ref.space_id,
                    slot_ordinal=ref.ordinal,
                    vehicle_id=plate,
                    start_time=start,
                    end_time=end,
                    status=PROCESSING,
                    fee=fee,
                    created_at=self._now(),
                )
                db.add(reservation)
                db.flush()
                reservation_id = reservation.id

            logger.info(f"Reservation {reservation_id} created on {ref} for {plate} ({start} - {end}), fee {fee}")
            return OpResult.success("Reservation created successfully",
                                    reservation_id=reservation_id, fee=fee, slot=ref.token)
        return self._run("create_reservation", action)

    def cancel_reservation(self, reservation_id: int, user_id: int) -> OpResult:
        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id, lock=True)
                if reservation.status == COMPLETE:
                    raise ConflictError("already_complete", "A completed reservation cannot be cancelled")
                if reservation.status == CANCELLED:
                    raise ConflictError("already_cancelled", "This reservation is already cancelled")
                reservation.status = CANCELLED
                db.add(reservation)
            logger.info(f"Reservation {reservation_id} cancelled")
            return OpResult.success("Reservation cancelled successfully", reservation_id=reservation_id)
        return self._run("cancel_reservation", action)

    def complete_reservation(self, reservation_id: int, user_id: int) -> OpResult:
        """Mark a Processing or Paid reservation complete and free its slot for walk-ins.

        Completion is allowed before the reservation's end time.
        """
        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id, lock=True)
                if reservation.status == COMPLETE:
                    raise ConflictError("already_complete", "This reservation is already complete")
                if reservation.status == CANCELLED:
                    raise ConflictError("invalid_transition", "A cancelled reservation cannot be completed")
                reservation.status = COMPLETE
                db.add(reservation)

                ref = reservation_slot(reservation)
                slot = get_slot(db, ref) if ref else None
                if slot is not None:
                    slot.availability = True
                    db.add(slot)
            logger.info(f"Reservation {reservation_id} completed")
            return OpResult.success("Reservation completed", reservation_id=reservation_id)
        return self._run("complete_reservation", action)

    def pay_reservation(self, reservation_id: int, user_id: int) -> OpResult:
        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id, lock=True)
                if reservation.status != PROCESSING:
                    raise ConflictError("invalid_transition",
                                        f"Only Processing reservations can be paid (status is {reservation.status})")
                reservation.status = PAID
                db.add(reservation)
                fee = reservation.fee
            logger.info(f"Reservation {reservation_id} paid ({fee})")
            return OpResult.success("Payment recorded", reservation_id=reservation_id, amount=fee)
        return self._run("pay_reservation", action)

    def check_extension(self, reservation_id: int, user_id: int, new_end: datetime) -> OpResult:
        """Dry run of ``extend_reservation``; nothing is written."""
        new_end = naive_utc(new_end)

        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id)
                quote = self._extension_quote(db, reservation, new_end)
            return OpResult.success("Reservation can be extended", **quote)
        return self._run("check_extension", action)

    def extend_reservation(self, reservation_id: int, user_id: int, new_end: datetime) -> OpResult:
        new_end = naive_utc(new_end)

        def action():
            with unit_of_work(self.engine) as db:
                reservation = self._load_owned(db, reservation_id, user_id, lock=True)
                ref = reservation_slot(reservation)
                if ref is not None:
                    lock_slot(db, ref)
                quote = self._extension_quote(db, reservation, new_end)
                reservation.end_time = new_end
                reservation.fee += quote["additional_fee"]
                db.add(reservation)
                quote["fee"] = reservation.fee
            logger.info(f"Reservation {reservation_id} extended to {new_end}")
            return OpResult.success("Reservation extended successfully", **quote)
        return self._run("extend_reservation", action)

    # --- helpers ---

    def _now(self) -> datetime:
        return naive_utc(self.clock())

    def _run(self, action: str, fn: Callable[[], OpResult]) -> OpResult:
        try:
            return fn()
        except BookingError as e:
            logger.warning(f"{action} failed: {e.reason} - {e.message}")
            return OpResult.failure(e)

    def _validate_interval(self, start: datetime, end: datetime):
        if end <= start:
            raise ValidationError("invalid_interval", "Reservation end time must be after start time")
        if start < self._now():
            raise ValidationError("start_in_past", "Reservation start time cannot be in the past")

    @staticmethod
    def _check_max_duration(space: ParkingSpace, start: datetime, end: datetime):
        if space.max_duration_hours is None:
            return
        hours = (end - start).total_seconds() / 3600
        if hours > space.max_duration_hours:
            raise ValidationError("exceeds_max_duration",
                                  f"Parking space {space.id} allows at most {space.max_duration_hours} hours")

    @staticmethod
    def _load_owned(db: DbSession, reservation_id: int, user_id: int, lock: bool = False) -> Reservation:
        query = select(Reservation).where(Reservation.id == reservation_id)
        if lock:
            query = query.with_for_update()
        reservation = db.exec(query).first()
        if reservation is None:
            raise ValidationError("reservation_not_found", f"Reservation {reservation_id} not found")
        if vehicle_belongs_to(db, reservation.vehicle_id) != user_id:
            raise ValidationError("not_owner", "You can only manage your own reservations")
        return reservation

    @staticmethod
    def _vehicle_conflicts(db: DbSession, plate: str, start: datetime, end: datetime,
                           exclude_id: Optional[int] = None) -> bool:
        rows = db.exec(
            select(Reservation).where(
                Reservation.vehicle_id == plate,
                Reservation.status.in_(ACTIVE_STATUSES),
            )
        ).all()
        return any(r.id != exclude_id and overlaps(r.start_time, r.end_time, start, end) for r in rows)

    def _extension_quote(self, db: DbSession, reservation: Reservation, new_end: datetime) -> dict:
        if not reservation.is_active:
            raise ConflictError("not_active", "This reservation cannot be extended")
        current_end = reservation.end_time
        if new_end <= current_end:
            raise ValidationError("invalid_interval", "New end time must be after current end time")
        ref = reservation_slot(reservation)
        if ref is None:
            raise ValidationError("slot_not_found", "The reserved slot no longer exists")

        space = get_space(db, reservation.space_id)
        self._check_max_duration(space, reservation.start_time, new_end)
        if self._vehicle_conflicts(db, reservation.vehicle_id, current_end, new_end, exclude_id=reservation.id):
            raise ConflictError("vehicle_double_booked", "Vehicle already has a reservation in the extension period")
        if not is_slot_available(db, ref, current_end, new_end, exclude_id=reservation.id):
            raise ConflictError("slot_unavailable", "The slot is not available for the requested extension period")

        return {
            "reservation_id": reservation.id,
            "current_end": current_end.isoformat(),
            "new_end": new_end.isoformat(),
            "additional_hours": billable_hours(current_end, new_end),
            "additional_fee": calculate_fee(space.hourly_rate, current_end, new_end),
        }
