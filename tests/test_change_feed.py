import threading
import time
from datetime import datetime, timezone

import pytest
from sqlalchemy import event

from rental_engine.db.database import PersistenceGateway, get_sessionmaker
from rental_engine.db.models import Base, Device, DeviceType
from rental_engine.realtime.feed import ChangeEvent, ChangeFeed, ChangeType, FeedDisconnected
from rental_engine.services.reservation import ReservationService
from rental_engine.schemas import ReservationRequest


def jan(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


def drain(subscription, timeout: float = 0.2):
    changes = []
    while True:
        change = subscription.get(timeout=timeout)
        if change is None:
            return changes
        changes.append(change)


def test_committed_insert_is_published(gateway, camera, seed):
    subscription = gateway.subscribe("reservations")

    reservation_id = seed.reservation(camera, "camera-01", jan(3), jan(5))

    (change,) = drain(subscription)
    assert change.event_type is ChangeType.INSERT
    assert change.row_before is None
    assert change.row_after["id"] == reservation_id
    assert change.row_id == reservation_id


def test_rolled_back_changes_are_never_published(gateway):
    subscription = gateway.subscribe("device_types")

    with pytest.raises(RuntimeError):
        with gateway.transaction() as session:
            session.add(DeviceType(id="ghost", name="Ghost", rental_rate=1))
            session.flush()
            raise RuntimeError("abort")

    assert drain(subscription) == []


def test_update_carries_before_and_after_rows(gateway, settings, camera):
    service = ReservationService(gateway, settings)
    reservation_id = service.reserve(
        ReservationRequest(device_type_id=camera, start_at=jan(1), end_at=jan(2))
    ).reservation_ids[0]
    subscription = gateway.subscribe("reservations")

    service.transition(reservation_id, "Active")

    (change,) = drain(subscription)
    assert change.event_type is ChangeType.UPDATE
    assert change.row_before["status"] == "Pending"
    assert change.row_after["status"] == "Active"


def test_row_filter_narrows_subscription(gateway, camera, seed):
    drone = seed.device_type("drone")
    seed.devices(drone, 1)
    subscription = gateway.subscribe("reservations", {"device_type_id": drone})

    seed.reservation(camera, "camera-01", jan(3), jan(5))
    drone_reservation = seed.reservation(drone, "drone-01", jan(3), jan(5))

    assert [c.row_id for c in drain(subscription)] == [drone_reservation]


def test_events_arrive_in_commit_order(gateway, camera, seed):
    subscription = gateway.subscribe("reservations")

    ids = [seed.reservation(camera, "camera-01", jan(d), jan(d + 1)) for d in (1, 3, 5)]

    changes = drain(subscription)
    assert [c.row_id for c in changes] == ids
    sequences = [c.sequence for c in changes]
    assert sequences == sorted(sequences)


def test_concurrent_writers_publish_in_commit_order(tmp_path):
    factory = get_sessionmaker(f"sqlite:///{tmp_path / 'feed.db'}")
    gateway = PersistenceGateway(factory)
    Base.metadata.create_all(gateway.engine)
    with gateway.transaction() as session:
        session.add(DeviceType(id="camera", name="Camera", rental_rate=20))
        session.flush()
        session.add(Device(id="camera-01", name="camera-01", device_type_id="camera"))
    subscription = gateway.subscribe("devices")

    # the first writer stalls between its database commit and its publish
    first_committed = threading.Event()

    def stall_first_writer(session):
        if session.info.get("writer") == "A":
            first_committed.set()
            time.sleep(0.5)

    event.listen(factory, "after_commit", stall_first_writer, insert=True)

    def write(condition: str):
        with gateway.transaction() as session:
            session.info["writer"] = condition
            session.get(Device, "camera-01").condition = condition

    try:
        first = threading.Thread(target=write, args=("A",))
        first.start()
        assert first_committed.wait(5)
        write("B")
        first.join(5)

        changes = drain(subscription)
        assert [c.row_after["condition"] for c in changes] == ["A", "B"]
        with gateway.session() as session:
            assert session.get(Device, "camera-01").condition == "B"
    finally:
        gateway.engine.dispose()


def test_full_buffer_drops_and_flags_a_gap():
    feed = ChangeFeed(buffer=1)
    subscription = feed.subscribe()

    feed.publish(
        [
            ChangeEvent("devices", ChangeType.INSERT, None, {"id": "a"}),
            ChangeEvent("devices", ChangeType.INSERT, None, {"id": "b"}),
        ]
    )

    assert subscription.take_gap() is True
    assert subscription.take_gap() is False
    assert subscription.get(timeout=0.1).row_id == "a"
    assert subscription.get(timeout=0.1) is None


def test_dropped_subscription_disconnects_without_replay():
    feed = ChangeFeed()
    subscription = feed.subscribe()
    feed.publish([ChangeEvent("devices", ChangeType.INSERT, None, {"id": "a"})])

    feed.drop_subscriptions()
    feed.publish([ChangeEvent("devices", ChangeType.INSERT, None, {"id": "b"})])

    with pytest.raises(FeedDisconnected):
        subscription.get(timeout=0.1)
    fresh = feed.subscribe()
    assert fresh.get(timeout=0.1) is None
