"""Weekly operating windows per parking space."""

from datetime import datetime, time
from typing import Optional, Tuple

from sqlmodel import Session as DbSession, select

from .errors import ValidationError
from .models import ParkingSchedule


def operating_window(db: DbSession, space_id: str, day_of_week: int) -> Optional[Tuple[time, time]]:
    row = db.exec(
        select(ParkingSchedule).where(
            ParkingSchedule.space_id == space_id,
            ParkingSchedule.day_of_week == day_of_week,
        )
    ).first()
    if row is None:
        return None
    return row.open_time, row.close_time


def has_schedule(db: DbSession, space_id: str) -> bool:
    return db.exec(select(ParkingSchedule).where(ParkingSchedule.space_id == space_id)).first() is not None


def is_open_at(db: DbSession, space_id: str, moment: datetime) -> bool:
    # Spaces without any schedule rows never close
    if not has_schedule(db, space_id):
        return True
    window = operating_window(db, space_id, moment.weekday())
    if window is None:
        return False
    open_time, close_time = window
    return open_time <= moment.time() <= close_time


def is_open_for(db: DbSession, space_id: str, start: datetime, end: datetime) -> bool:
    return is_open_at(db, space_id, start) and is_open_at(db, space_id, end)


def set_operating_window(db: DbSession, space_id: str, day_of_week: int,
                         open_time: time, close_time: time) -> ParkingSchedule:
    if not 0 <= day_of_week <= 6:
        raise ValidationError("invalid_day", "day_of_week must be between 0 (Monday) and 6 (Sunday)")
    if close_time <= open_time:
        raise ValidationError("invalid_window", "closing time must be after opening time")

    row = db.exec(
        select(ParkingSchedule).where(
            ParkingSchedule.space_id == space_id,
            ParkingSchedule.day_of_week == day_of_week,
        )
    ).first()
    if row is None:
        row = ParkingSchedule(space_id=space_id, day_of_week=day_of_week,
                              open_time=open_time, close_time=close_time)
    else:
        row.open_time = open_time
        row.close_time = close_time
    db.add(row)
    db.flush()
    return row
