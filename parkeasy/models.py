from datetime import datetime, time, timezone
from typing import Optional
from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

# Reservation statuses
PROCESSING = "Processing"
PAID = "Paid"
COMPLETE = "Complete"
CANCELLED = "Cancelled"

# Statuses that hold a slot for their interval
ACTIVE_STATUSES = (PROCESSING, PAID)


# Timestamps are stored as naive UTC in plain DateTime columns
def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def naive_utc(moment: datetime) -> datetime:
    """Convert an offset-aware datetime to naive UTC; naive values are taken as UTC already."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str


class Vehicle(SQLModel, table=True):
    plate: str = Field(primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    description: str = Field(default="")


class ParkingSpace(SQLModel, table=True):
    id: str = Field(primary_key=True)
    address: str
    hourly_rate: float = Field(ge=0)
    slot_count: int = Field(default=0)
    max_duration_hours: Optional[int] = None
    description: str = Field(default="")
    owner_admin_id: Optional[int] = None


class ParkingSlot(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("space_id", "ordinal", name="uq_slot_space_ordinal"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: str = Field(foreign_key="parkingspace.id", index=True)
    ordinal: int
    availability: bool = Field(default=True)  # current occupancy, not future bookings


class ParkingSchedule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: str = Field(foreign_key="parkingspace.id", index=True)
    day_of_week: int  # 0 = Monday ... 6 = Sunday
    open_time: time
    close_time: time


class Reservation(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    space_id: str = Field(index=True)
    # NULL once the slot was removed from its space
    slot_ordinal: Optional[int] = Field(default=None, index=True)
    vehicle_id: str = Field(foreign_key="vehicle.plate", index=True)
    start_time: datetime = Field(sa_type=DateTime)
    end_time: datetime = Field(sa_type=DateTime)
    status: str = Field(default=PROCESSING)  # Processing, Paid, Complete, Cancelled
    fee: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES
