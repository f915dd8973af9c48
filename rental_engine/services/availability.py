from datetime import datetime
from typing import Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from rental_engine.core.exceptions import NotFoundError
from rental_engine.core.intervals import Window
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.repositories.device import DeviceRepository, DeviceTypeRepository
from rental_engine.monitoring.metrics import MetricsCollector
from rental_engine.schemas import AvailabilityResponse


def availability_in_session(
    session: Session, device_type_id: str, window: Window
) -> AvailabilityResponse:
    """Free/total Working units of one type, read through ``session``.

    The reservation coordinator calls this inside its write transaction so the
    figure it acts on is never older than the transaction itself.
    """
    if DeviceTypeRepository(session).get_by_id(device_type_id) is None:
        raise NotFoundError("DeviceType", device_type_id)

    device_repo = DeviceRepository(session)
    total = device_repo.count_working(device_type_id)
    booked = device_repo.count_booked(device_type_id, window)
    return AvailabilityResponse(
        device_type_id=device_type_id,
        available_count=max(0, total - booked),
        total_count=total,
    )


class AvailabilityService:
    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def compute_availability(
        self,
        device_type_id: str,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> AvailabilityResponse:
        window = Window.from_bounds(window_start, window_end)
        MetricsCollector.record_availability_query("single")

        with self.gateway.session() as session:
            result = availability_in_session(session, device_type_id, window)

        logger.debug(
            f"Availability {device_type_id} [{window.start}, {window.end}): "
            f"{result.available_count}/{result.total_count}"
        )
        return result

    def compute_availability_for_all_types(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> Dict[str, AvailabilityResponse]:
        window = Window.from_bounds(window_start, window_end)
        MetricsCollector.record_availability_query("all")

        # one snapshot so totals and bookings come from the same read point
        with self.gateway.session() as session:
            type_ids = [t.id for t in DeviceTypeRepository(session).list_device_types()]
            device_repo = DeviceRepository(session)
            totals = device_repo.count_working_by_type()
            booked = device_repo.count_booked_by_type(window)

        result = {}
        for type_id in type_ids:
            total = totals.get(type_id, 0)
            result[type_id] = AvailabilityResponse(
                device_type_id=type_id,
                available_count=max(0, total - booked.get(type_id, 0)),
                total_count=total,
            )
        return result
