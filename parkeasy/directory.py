from typing import List, Optional

from sqlmodel import Session as DbSession, select

from .errors import ConflictError, ValidationError
from .models import User, Vehicle


def register_user(db: DbSession, name: str) -> User:
    user = User(name=name)
    db.add(user)
    db.flush()
    return user


def register_vehicle(db: DbSession, plate: str, user_id: int, description: str = "") -> Vehicle:
    plate = plate.strip().upper()
    if not plate:
        raise ValidationError("invalid_plate", "Plate cannot be empty")
    if db.get(User, user_id) is None:
        raise ValidationError("user_not_found", f"User {user_id} not found")
    if db.get(Vehicle, plate) is not None:
        raise ConflictError("vehicle_exists", f"Vehicle {plate} is already registered")

    vehicle = Vehicle(plate=plate, user_id=user_id, description=description)
    db.add(vehicle)
    db.flush()
    return vehicle


def vehicle_belongs_to(db: DbSession, vehicle_id: str) -> Optional[int]:
    vehicle = db.get(Vehicle, vehicle_id)
    return vehicle.user_id if vehicle else None


def vehicles_of(db: DbSession, user_id: int) -> List[str]:
    return list(db.exec(select(Vehicle.plate).where(Vehicle.user_id == user_id)).all())
