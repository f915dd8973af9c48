import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from rental_engine.config.settings import Settings
from rental_engine.core.exceptions import ConflictError, InsufficientAvailabilityError
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import Base, Device, DeviceType, Reservation
from rental_engine.schemas import ReservationRequest
from rental_engine.services.reservation import ReservationService


@pytest.fixture
def file_gateway(tmp_path):
    # threads need their own connections to one database, so no in-memory store here
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'rentals.db'}",
        reserve_backoff_base_sec=0.01,
        metrics_enabled=False,
    )
    gateway = PersistenceGateway.from_settings(settings)
    Base.metadata.create_all(gateway.engine)
    with gateway.transaction() as session:
        session.add(
            DeviceType(
                id="drone",
                name="Drone",
                rental_rate=Decimal("40.00"),
                deposit=Decimal("100.00"),
            )
        )
        session.flush()
        session.add(Device(id="drone-01", name="Drone 1", device_type_id="drone"))
    try:
        yield gateway, settings
    finally:
        gateway.engine.dispose()


def _race(gateway, settings, workers: int):
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def attempt(user_id: str):
        service = ReservationService(gateway, settings)
        request = ReservationRequest(
            device_type_id="drone",
            start_at=datetime(2024, 3, 1, tzinfo=timezone.utc),
            end_at=datetime(2024, 3, 4, tzinfo=timezone.utc),
            user_id=user_id,
        )
        barrier.wait()
        try:
            service.reserve(request)
            outcome = "committed"
        except (InsufficientAvailabilityError, ConflictError) as e:
            outcome = type(e).__name__
        with lock:
            outcomes.append(outcome)

    threads = [
        threading.Thread(target=attempt, args=(f"user-{i}",)) for i in range(workers)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


@pytest.mark.slow
@pytest.mark.parametrize("workers", [2, 4])
def test_last_unit_is_never_sold_twice(file_gateway, workers):
    gateway, settings = file_gateway

    outcomes = _race(gateway, settings, workers)

    assert len(outcomes) == workers
    assert outcomes.count("committed") == 1
    with gateway.session() as session:
        assert session.query(Reservation).count() == 1
