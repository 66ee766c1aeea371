from fastapi import FastAPI, HTTPException, Depends, Request, APIRouter
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
from datetime import datetime, time
from typing import Callable, Optional
from pydantic import BaseModel
from sqlalchemy.engine import Engine

from . import config
from .audit import audit_space
from .database import create_db_and_tables, engine as default_engine, unit_of_work
from .models import naive_utc, utcnow
from .directory import register_user, register_vehicle
from .errors import BookingError, OpResult, ValidationError
from .fees import billable_hours, calculate_fee
from .renumbering import SlotRenumberer
from .reservations import ReservationManager
from .schedule import is_open_for, set_operating_window
from .slots import as_slot_ref, list_slots, slot_view
from .spaces import add_slot, available_slots_for_range, create_parking_space, get_space, set_slot_availability

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger("API")

# --- MODELS ---
class CreateSpaceRequest(BaseModel):
    space_id: str
    address: str
    hourly_rate: float
    slot_count: int = config.DEFAULT_SLOTS
    max_duration_hours: Optional[int] = None
    description: str = ""
    owner_admin_id: Optional[int] = None

class ScheduleRequest(BaseModel):
    day_of_week: int  # 0 = Monday
    open_time: time
    close_time: time

class SlotAvailabilityRequest(BaseModel):
    availability: bool

class CreateUserRequest(BaseModel):
    name: str

class CreateVehicleRequest(BaseModel):
    plate: str
    user_id: int
    description: str = ""

class CreateReservationRequest(BaseModel):
    user_id: int
    vehicle_id: str
    space_id: str
    slot: str
    start: datetime
    end: datetime

class ReservationActionRequest(BaseModel):
    user_id: int

class ExtensionRequest(BaseModel):
    user_id: int
    new_end: datetime

# --- DEPENDENCIES ---
def get_engine(request: Request) -> Engine:
    return request.app.state.engine

def get_reservations(request: Request) -> ReservationManager:
    return request.app.state.reservations

def get_renumberer(request: Request) -> SlotRenumberer:
    return request.app.state.renumberer

# --- HELPERS ---
def run_in_transaction(db_engine: Engine, fn, message: Optional[str] = None) -> dict:
    try:
        with unit_of_work(db_engine) as db:
            data = fn(db)
    except BookingError as e:
        logger.warning(f"Request rejected: {e.reason} - {e.message}")
        return OpResult.failure(e).model_dump()
    return OpResult.success(message, **data).model_dump()

def require_interval(start: datetime, end: datetime):
    start, end = naive_utc(start), naive_utc(end)
    if end <= start:
        raise HTTPException(400, "End time must be after start time")
    return start, end

router = APIRouter(prefix="/api")

# --- ADMIN ---

@router.post("/admin/spaces")
def create_space(req: CreateSpaceRequest, db_engine: Engine = Depends(get_engine)):
    def action(db):
        space = create_parking_space(db, req.space_id, req.address, req.hourly_rate, req.slot_count,
                                     req.max_duration_hours, req.description, req.owner_admin_id)
        return {"space_id": space.id, "slot_count": space.slot_count}
    return run_in_transaction(db_engine, action, "Parking space created")

@router.post("/admin/spaces/{space_id}/slots")
def append_slot(space_id: str, db_engine: Engine = Depends(get_engine)):
    return run_in_transaction(db_engine, lambda db: slot_view(add_slot(db, space_id)), "Slot added")

@router.put("/admin/spaces/{space_id}/schedule")
def put_schedule(space_id: str, req: ScheduleRequest, db_engine: Engine = Depends(get_engine)):
    def action(db):
        get_space(db, space_id)
        row = set_operating_window(db, space_id, req.day_of_week, req.open_time, req.close_time)
        return {"space_id": space_id, "day_of_week": row.day_of_week,
                "open_time": row.open_time.isoformat(), "close_time": row.close_time.isoformat()}
    return run_in_transaction(db_engine, action, "Schedule updated")

@router.post("/admin/slots/{token}/availability")
def put_slot_availability(token: str, req: SlotAvailabilityRequest, db_engine: Engine = Depends(get_engine)):
    return run_in_transaction(
        db_engine, lambda db: slot_view(set_slot_availability(db, as_slot_ref(token), req.availability))
    )

@router.delete("/admin/slots/{token}")
def remove_slot(token: str, renumberer: SlotRenumberer = Depends(get_renumberer)):
    return renumberer.remove_slot_with_renumbering(token).model_dump()

@router.delete("/admin/slots/{token}/force")
def force_remove_slot(token: str, renumberer: SlotRenumberer = Depends(get_renumberer)):
    return renumberer.force_remove(token).model_dump()

@router.get("/admin/spaces/{space_id}/audit")
def get_audit(space_id: str, db_engine: Engine = Depends(get_engine)):
    def action(db):
        issues = audit_space(db, space_id)
        return {"space_id": space_id, "consistent": not issues, "issues": issues}
    return run_in_transaction(db_engine, action)

# --- SPACES & SLOTS ---

@router.get("/spaces/{space_id}/slots")
def get_slots(space_id: str, db_engine: Engine = Depends(get_engine)):
    with unit_of_work(db_engine) as db:
        try:
            space = get_space(db, space_id)
        except ValidationError:
            raise HTTPException(404, "Parking space not found")
        slots = [slot_view(s) for s in list_slots(db, space_id)]
        free = len([s for s in slots if s["availability"]])
        return {"space_id": space.id, "total": len(slots), "free": free, "slots": slots}

@router.get("/spaces/{space_id}/available")
def get_available_slots(space_id: str, start: datetime, end: datetime, db_engine: Engine = Depends(get_engine)):
    start, end = require_interval(start, end)
    def action(db):
        slots = available_slots_for_range(db, space_id, start, end)
        return {"space_id": space_id, "slots": [slot_view(s) for s in slots]}
    return run_in_transaction(db_engine, action)

@router.get("/spaces/{space_id}/quote")
def get_quote(space_id: str, start: datetime, end: datetime, db_engine: Engine = Depends(get_engine)):
    start, end = require_interval(start, end)
    def action(db):
        space = get_space(db, space_id)
        return {"space_id": space_id, "hourly_rate": space.hourly_rate,
                "hours": billable_hours(start, end), "fee": calculate_fee(space.hourly_rate, start, end)}
    return run_in_transaction(db_engine, action)

@router.get("/slots/{token}/availability")
def get_slot_availability(token: str, start: datetime, end: datetime,
                          reservations: ReservationManager = Depends(get_reservations)):
    start, end = require_interval(start, end)
    return {"slot": token, "available": reservations.is_slot_available(token, start, end)}

# --- DIRECTORY ---

@router.post("/users")
def create_user(req: CreateUserRequest, db_engine: Engine = Depends(get_engine)):
    def action(db):
        user = register_user(db, req.name)
        return {"user_id": user.id, "name": user.name}
    return run_in_transaction(db_engine, action, "User registered")

@router.post("/vehicles")
def create_vehicle(req: CreateVehicleRequest, db_engine: Engine = Depends(get_engine)):
    def action(db):
        vehicle = register_vehicle(db, req.plate, req.user_id, req.description)
        return {"plate": vehicle.plate, "user_id": vehicle.user_id}
    return run_in_transaction(db_engine, action, "Vehicle registered")

# --- RESERVATIONS ---

@router.post("/reservations")
def create_reservation(req: CreateReservationRequest, db_engine: Engine = Depends(get_engine),
                       reservations: ReservationManager = Depends(get_reservations)):
    # Operating hours are enforced here, before the lifecycle manager is involved
    try:
        with unit_of_work(db_engine) as db:
            open_for_booking = is_open_for(db, req.space_id, naive_utc(req.start), naive_utc(req.end))
    except BookingError as e:
        return OpResult.failure(e).model_dump()
    if not open_for_booking:
        return OpResult.failure(ValidationError(
            "outside_operating_hours", "The parking space is closed during the requested time")).model_dump()

    result = reservations.create_reservation(req.user_id, req.vehicle_id, req.space_id,
                                             req.slot, req.start, req.end)
    return result.model_dump()

@router.get("/reservations/{reservation_id}")
def get_reservation(reservation_id: int, user_id: int,
                    reservations: ReservationManager = Depends(get_reservations)):
    return reservations.get_reservation(reservation_id, user_id).model_dump()

@router.post("/reservations/{reservation_id}/cancel")
def cancel_reservation(reservation_id: int, req: ReservationActionRequest,
                       reservations: ReservationManager = Depends(get_reservations)):
    return reservations.cancel_reservation(reservation_id, req.user_id).model_dump()

@router.post("/reservations/{reservation_id}/complete")
def complete_reservation(reservation_id: int, req: ReservationActionRequest,
                         reservations: ReservationManager = Depends(get_reservations)):
    return reservations.complete_reservation(reservation_id, req.user_id).model_dump()

@router.post("/reservations/{reservation_id}/pay")
def pay_reservation(reservation_id: int, req: ReservationActionRequest,
                    reservations: ReservationManager = Depends(get_reservations)):
    return reservations.pay_reservation(reservation_id, req.user_id).model_dump()

@router.post("/reservations/{reservation_id}/extension")
def check_extension(reservation_id: int, req: ExtensionRequest,
                    reservations: ReservationManager = Depends(get_reservations)):
    return reservations.check_extension(reservation_id, req.user_id, req.new_end).model_dump()

@router.post("/reservations/{reservation_id}/extend")
def extend_reservation(reservation_id: int, req: ExtensionRequest,
                       reservations: ReservationManager = Depends(get_reservations)):
    return reservations.extend_reservation(reservation_id, req.user_id, req.new_end).model_dump()

@router.get("/users/{user_id}/reservations")
def list_reservations(user_id: int, scope: str = "active",
                      reservations: ReservationManager = Depends(get_reservations)):
    try:
        rows = reservations.list_for_user(user_id, scope)
    except ValidationError as e:
        raise HTTPException(400, e.message)
    return {"user_id": user_id, "scope": scope, "reservations": rows}


def create_app(db_engine: Optional[Engine] = None, clock: Callable[[], datetime] = utcnow) -> FastAPI:
    db_engine = db_engine or default_engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        create_db_and_tables(db_engine)
        logger.info("Database ready")
        yield

    app = FastAPI(title="ParkEasy booking engine", lifespan=lifespan)
    app.state.engine = db_engine
    app.state.reservations = ReservationManager(db_engine, clock=clock)
    app.state.renumberer = SlotRenumberer(db_engine)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()
