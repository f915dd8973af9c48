from typing import List, Optional, Tuple

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_engine.core.intervals import Window, overlap_clause
from rental_engine.db.models import (
    HOLDING_STATUSES,
    Reservation,
    ReservationAccessory,
)


def booked_device_ids(window: Window, device_type_id: Optional[str] = None):
    """Subquery of devices held by a Pending/Active reservation meeting the window."""
    stmt = select(Reservation.device_id).where(
        Reservation.device_id.is_not(None),
        Reservation.status.in_(HOLDING_STATUSES),
        overlap_clause(Reservation.start_at, Reservation.end_at, window),
    )
    if device_type_id is not None:
        stmt = stmt.where(Reservation.device_type_id == device_type_id)
    return stmt


class ReservationRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, reservation_id: str) -> Optional[Reservation]:
        return self.session.get(Reservation, reservation_id)

    def create_reservation(self, reservation: Reservation) -> None:
        self.session.add(reservation)
        self.session.flush()

    def list_by_checkout(self, checkout_id: str) -> List[Reservation]:
        return list(
            self.session.execute(
                select(Reservation)
                .where(Reservation.checkout_id == checkout_id)
                .order_by(Reservation.device_id)
            ).scalars()
        )

    def list_holding_for_device(self, device_id: str) -> List[Reservation]:
        return list(
            self.session.execute(
                select(Reservation)
                .where(
                    Reservation.device_id == device_id,
                    Reservation.status.in_(HOLDING_STATUSES),
                )
                .order_by(Reservation.start_at)
            ).scalars()
        )

    def update_status(self, reservation: Reservation, status: str) -> None:
        old_status = reservation.status
        reservation.status = status
        self.session.flush()
        logger.info(f"Reservation {reservation.id} moved {old_status} -> {status}")

    def add_accessory(self, reservation_id: str, accessory_id: str, quantity: int) -> None:
        self.session.add(
            ReservationAccessory(
                reservation_id=reservation_id,
                accessory_id=accessory_id,
                quantity=quantity,
            )
        )
        self.session.flush()

    def list_accessories(self, reservation_id: str) -> List[ReservationAccessory]:
        return list(
            self.session.execute(
                select(ReservationAccessory)
                .where(ReservationAccessory.reservation_id == reservation_id)
                .order_by(ReservationAccessory.accessory_id)
            ).scalars()
        )

    def accessory_allocations(
        self, accessory_id: str, window: Window
    ) -> List[Tuple]:
        """(start, end, quantity) of holding allocations of the accessory meeting the window."""
        rows = self.session.execute(
            select(
                Reservation.start_at,
                Reservation.end_at,
                ReservationAccessory.quantity,
            )
            .select_from(ReservationAccessory)
            .join(Reservation, Reservation.id == ReservationAccessory.reservation_id)
            .where(
                ReservationAccessory.accessory_id == accessory_id,
                Reservation.status.in_(HOLDING_STATUSES),
                overlap_clause(Reservation.start_at, Reservation.end_at, window),
            )
        ).all()
        return [(row.start_at, row.end_at, row.quantity) for row in rows]
