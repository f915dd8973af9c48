from datetime import date, datetime
from decimal import Decimal
from typing import Generator, Optional

import pytest

from rental_engine.config.settings import Settings
from rental_engine.core.utils import uuid4
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import (
    Accessory,
    Base,
    Device,
    DeviceType,
    Reservation,
    ReservationStatus,
    WorkingState,
)
from rental_engine.db.repositories import (
    AccessoryRepository,
    DeviceRepository,
    DeviceTypeRepository,
    ReservationRepository,
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        metrics_enabled=False,
        reserve_backoff_base_sec=0.0,
        change_router_reconnect_sec=0.05,
        log_level="WARNING",
    )


@pytest.fixture
def gateway(settings: Settings) -> Generator[PersistenceGateway, None, None]:
    gateway = PersistenceGateway.from_settings(settings)
    Base.metadata.create_all(gateway.engine)
    try:
        yield gateway
    finally:
        gateway.engine.dispose()


class Seeder:
    """Writes fixture rows through the gateway so they reach the change feed."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def device_type(
        self,
        type_id: str = "camera",
        rental_rate: str = "20.00",
        deposit: str = "50.00",
        has_subscription: bool = False,
        subscription_cost: Optional[str] = None,
    ) -> str:
        with self.gateway.transaction() as session:
            DeviceTypeRepository(session).create_device_type(
                DeviceType(
                    id=type_id,
                    name=type_id.title(),
                    rental_rate=Decimal(rental_rate),
                    deposit=Decimal(deposit),
                    has_subscription=has_subscription,
                    subscription_cost=Decimal(subscription_cost) if subscription_cost else None,
                )
            )
        return type_id

    def devices(
        self,
        type_id: str,
        count: int,
        working_state: str = WorkingState.WORKING.value,
        subscription_date: Optional[date] = None,
        prefix: Optional[str] = None,
    ) -> list:
        prefix = prefix or type_id
        ids = [f"{prefix}-{i:02d}" for i in range(1, count + 1)]
        with self.gateway.transaction() as session:
            repo = DeviceRepository(session)
            for device_id in ids:
                repo.create_device(
                    Device(
                        id=device_id,
                        name=device_id,
                        device_type_id=type_id,
                        working_state=working_state,
                        subscription_date=subscription_date,
                    )
                )
        return ids

    def accessory(self, accessory_id: str = "tripod", rental_rate: str = "5.00", quantity: int = 2) -> str:
        with self.gateway.transaction() as session:
            AccessoryRepository(session).create_accessory(
                Accessory(
                    id=accessory_id,
                    name=accessory_id.title(),
                    rental_rate=Decimal(rental_rate),
                    quantity=quantity,
                )
            )
        return accessory_id

    def reservation(
        self,
        type_id: str,
        device_id: Optional[str],
        start_at: datetime,
        end_at: datetime,
        status: str = ReservationStatus.ACTIVE.value,
        accessories: Optional[dict] = None,
    ) -> str:
        reservation_id = uuid4()
        with self.gateway.transaction() as session:
            repo = ReservationRepository(session)
            repo.create_reservation(
                Reservation(
                    id=reservation_id,
                    checkout_id=uuid4(),
                    device_type_id=type_id,
                    device_id=device_id,
                    start_at=start_at,
                    end_at=end_at,
                    status=status,
                    rate=Decimal("20.00"),
                    deposit=Decimal("50.00"),
                    total_paid=Decimal("0"),
                )
            )
            for accessory_id, quantity in (accessories or {}).items():
                repo.add_accessory(reservation_id, accessory_id, quantity)
        return reservation_id


@pytest.fixture
def seed(gateway: PersistenceGateway) -> Seeder:
    return Seeder(gateway)


@pytest.fixture
def camera(seed: Seeder) -> str:
    """Scenario base: a "camera" type with three Working units."""
    type_id = seed.device_type("camera", rental_rate="20.00", deposit="50.00")
    seed.devices(type_id, 3)
    return type_id


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")
