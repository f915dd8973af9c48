from datetime import date
from typing import Dict, List, Optional

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from rental_engine.core.intervals import Window
from rental_engine.db.models import Device, DeviceType, WorkingState
from rental_engine.db.repositories.reservation import booked_device_ids


class DeviceTypeRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, device_type_id: str) -> Optional[DeviceType]:
        return self.session.get(DeviceType, device_type_id)

    def create_device_type(self, device_type: DeviceType) -> None:
        self.session.add(device_type)
        self.session.flush()

    def list_device_types(self) -> List[DeviceType]:
        return list(
            self.session.execute(select(DeviceType).order_by(DeviceType.id)).scalars()
        )

    def lock_for_booking(self, device_type_id: str) -> bool:
        """Bump the booking version, holding the row lock until commit.

        Every checkout for the type serializes on this row, so availability read
        afterwards in the same transaction cannot be invalidated by a concurrent
        checkout before we commit.
        """
        result = self.session.execute(
            update(DeviceType)
            .where(DeviceType.id == device_type_id)
            .values(booking_version=DeviceType.booking_version + 1)
        )
        return result.rowcount > 0


class DeviceRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, device_id: str) -> Optional[Device]:
        return self.session.get(Device, device_id)

    def create_device(self, device: Device) -> None:
        self.session.add(device)
        self.session.flush()

    def list_devices(self, device_type_id: Optional[str] = None) -> List[Device]:
        stmt = select(Device).order_by(Device.id)
        if device_type_id is not None:
            stmt = stmt.where(Device.device_type_id == device_type_id)
        return list(self.session.execute(stmt).scalars())

    def count_working(self, device_type_id: str) -> int:
        return self.session.execute(
            select(func.count(Device.id)).where(
                Device.device_type_id == device_type_id,
                Device.working_state == WorkingState.WORKING.value,
            )
        ).scalar_one()

    def count_working_by_type(self) -> Dict[str, int]:
        rows = self.session.execute(
            select(Device.device_type_id, func.count(Device.id))
            .where(Device.working_state == WorkingState.WORKING.value)
            .group_by(Device.device_type_id)
        ).all()
        return {type_id: count for type_id, count in rows}

    def count_booked(self, device_type_id: str, window: Window) -> int:
        return self.session.execute(
            select(func.count(func.distinct(Device.id))).where(
                Device.device_type_id == device_type_id,
                Device.working_state == WorkingState.WORKING.value,
                Device.id.in_(booked_device_ids(window, device_type_id)),
            )
        ).scalar_one()

    def count_booked_by_type(self, window: Window) -> Dict[str, int]:
        rows = self.session.execute(
            select(Device.device_type_id, func.count(Device.id))
            .where(
                Device.working_state == WorkingState.WORKING.value,
                Device.id.in_(booked_device_ids(window)),
            )
            .group_by(Device.device_type_id)
        ).all()
        return {type_id: count for type_id, count in rows}

    def list_free_devices(
        self, device_type_id: str, window: Window, limit: int
    ) -> List[Device]:
        """Working devices with no holding reservation in the window, lowest id first."""
        stmt = (
            select(Device)
            .where(
                Device.device_type_id == device_type_id,
                Device.working_state == WorkingState.WORKING.value,
                Device.id.not_in(booked_device_ids(window, device_type_id)),
            )
            .order_by(Device.id)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def list_due_subscriptions(self, as_of: date) -> List[Device]:
        stmt = (
            select(Device)
            .join(DeviceType, DeviceType.id == Device.device_type_id)
            .where(
                DeviceType.has_subscription.is_(True),
                Device.subscription_date.is_not(None),
                Device.subscription_date <= as_of,
            )
            .order_by(Device.id)
        )
        devices = list(self.session.execute(stmt).scalars())
        logger.debug(f"Found {len(devices)} device(s) with subscriptions due by {as_of}")
        return devices
