import sys
from sqlmodel import select
from parkeasy.database import unit_of_work
from parkeasy.models import Reservation
from parkeasy.reservations import reservation_view

with unit_of_work() as db:
    query = select(Reservation).order_by(Reservation.created_at)
    if len(sys.argv) > 1:
        query = query.where(Reservation.space_id == sys.argv[1])
    reservations = db.exec(query).all()
    if not reservations:
        print('NO_RESERVATIONS')
    for r in reservations:
        view = reservation_view(r)
        print(view["id"], view["slot"], view["vehicle_id"], view["status"], view["start_time"], view["end_time"], view["fee"])
