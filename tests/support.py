"""Shared fixtures: a throwaway SQLite database per test and seeding helpers."""

import os
import shutil
import tempfile
import unittest
from datetime import datetime

from sqlmodel import select

from parkeasy.database import create_db_and_tables, make_engine, unit_of_work
from parkeasy.directory import register_user, register_vehicle
from parkeasy.models import ParkingSlot, ParkingSpace, Reservation
from parkeasy.spaces import create_parking_space

# 2024-01-01 is a Monday
NOW = datetime(2024, 1, 1, 8, 0)


def fixed_clock():
    return NOW


def at(hour, minute=0, day=1):
    return datetime(2024, 1, day, hour, minute)


class DatabaseTestCase(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="parkeasy-test-")
        self.engine = make_engine(f"sqlite:///{os.path.join(self.tmpdir, 'parking.db')}")
        create_db_and_tables(self.engine)

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    # --- seeding ---

    def seed_space(self, space_id="P10", slots=5, rate=10.0, max_duration_hours=None):
        with unit_of_work(self.engine) as db:
            create_parking_space(db, space_id, f"{space_id} Main Street", rate, slots, max_duration_hours)

    def seed_user(self, name, plate):
        with unit_of_work(self.engine) as db:
            user = register_user(db, name)
            register_vehicle(db, plate, user.id)
            return user.id

    def add_reservation(self, space_id, ordinal, vehicle_id, start, end, status):
        """Insert a reservation row directly, bypassing the lifecycle checks."""
        with unit_of_work(self.engine) as db:
            reservation = Reservation(space_id=space_id, slot_ordinal=ordinal, vehicle_id=vehicle_id,
                                      start_time=start, end_time=end, status=status, fee=10.0)
            db.add(reservation)
            db.flush()
            return reservation.id

    # --- reading back ---

    def reservation(self, reservation_id):
        with unit_of_work(self.engine) as db:
            return db.get(Reservation, reservation_id)

    def all_reservations(self, space_id=None):
        with unit_of_work(self.engine) as db:
            query = select(Reservation).order_by(Reservation.id)
            if space_id:
                query = query.where(Reservation.space_id == space_id)
            return list(db.exec(query).all())

    def slot_ordinals(self, space_id):
        with unit_of_work(self.engine) as db:
            rows = db.exec(
                select(ParkingSlot).where(ParkingSlot.space_id == space_id).order_by(ParkingSlot.ordinal)
            ).all()
            return [s.ordinal for s in rows]

    def slot_availability(self, space_id, ordinal):
        with unit_of_work(self.engine) as db:
            slot = db.exec(
                select(ParkingSlot).where(ParkingSlot.space_id == space_id, ParkingSlot.ordinal == ordinal)
            ).first()
            return slot.availability

    def space(self, space_id):
        with unit_of_work(self.engine) as db:
            return db.get(ParkingSpace, space_id)
