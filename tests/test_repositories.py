from datetime import date, datetime, timezone
from decimal import Decimal

from rental_engine.core.intervals import Window
from rental_engine.db.models import ReservationStatus, WorkingState
from rental_engine.db.repositories.accessory import AccessoryRepository
from rental_engine.db.repositories.device import DeviceRepository, DeviceTypeRepository
from rental_engine.db.repositories.reservation import ReservationRepository
from rental_engine.db.repositories.subscription import (
    NotificationRepository,
    SubscriptionPaymentRepository,
)


def jan(day: int) -> datetime:
    return datetime(2024, 1, day, tzinfo=timezone.utc)


# ---------- DeviceTypeRepository ----------


def test_lock_for_booking_bumps_version(gateway, camera):
    with gateway.transaction() as session:
        repo = DeviceTypeRepository(session)
        assert repo.lock_for_booking(camera) is True
        assert repo.lock_for_booking("missing") is False

    with gateway.session() as session:
        assert DeviceTypeRepository(session).get_by_id(camera).booking_version == 1


# ---------- DeviceRepository ----------


def test_counts_ignore_units_out_of_service(gateway, camera, seed):
    seed.devices(camera, 1, working_state=WorkingState.NOT_WORKING.value, prefix="broken")

    with gateway.session() as session:
        repo = DeviceRepository(session)
        assert repo.count_working(camera) == 3
        assert repo.count_working_by_type() == {camera: 3}
        assert len(repo.list_devices(camera)) == 4


def test_list_free_devices_skips_booked_units(gateway, camera, seed):
    seed.reservation(camera, "camera-02", jan(2), jan(4))
    window = Window(jan(1), jan(3))

    with gateway.session() as session:
        repo = DeviceRepository(session)
        free = repo.list_free_devices(camera, window, limit=5)
        assert [d.id for d in free] == ["camera-01", "camera-03"]
        assert repo.count_booked(camera, window) == 1
        assert repo.count_booked_by_type(window) == {camera: 1}


def test_list_due_subscriptions(gateway, seed):
    router = seed.device_type("router", has_subscription=True, subscription_cost="9.99")
    seed.devices(router, 1, subscription_date=date(2024, 1, 10), prefix="due")
    seed.devices(router, 1, subscription_date=date(2024, 2, 10), prefix="later")
    seed.devices(router, 1, prefix="never")

    with gateway.session() as session:
        due = DeviceRepository(session).list_due_subscriptions(date(2024, 1, 31))
        assert [d.id for d in due] == ["due-01"]


# ---------- ReservationRepository ----------


def test_accessory_allocations_only_count_holding_reservations(gateway, camera, seed):
    seed.accessory("tripod", quantity=3)
    seed.reservation(camera, "camera-01", jan(1), jan(3), accessories={"tripod": 1})
    seed.reservation(
        camera,
        "camera-02",
        jan(2),
        jan(4),
        status=ReservationStatus.CANCELLED.value,
        accessories={"tripod": 2},
    )
    seed.reservation(camera, "camera-03", jan(5), jan(6), accessories={"tripod": 2})

    with gateway.session() as session:
        allocations = ReservationRepository(session).accessory_allocations(
            "tripod", Window(jan(1), jan(5))
        )
        assert [quantity for _, _, quantity in allocations] == [1]


def test_list_holding_for_device(gateway, camera, seed):
    active = seed.reservation(camera, "camera-01", jan(1), jan(3))
    seed.reservation(
        camera, "camera-01", jan(3), jan(4), status=ReservationStatus.COMPLETED.value
    )

    with gateway.session() as session:
        holding = ReservationRepository(session).list_holding_for_device("camera-01")
        assert [r.id for r in holding] == [active]


# ---------- AccessoryRepository ----------


def test_get_many_returns_known_accessories(gateway, seed):
    seed.accessory("tripod")
    seed.accessory("bag")

    with gateway.session() as session:
        found = AccessoryRepository(session).get_many(["tripod", "bag", "missing"])
        assert set(found) == {"tripod", "bag"}
        assert AccessoryRepository(session).get_many([]) == {}


# ---------- Subscription payments and notifications ----------


def test_payment_and_notification_round_trip(gateway, seed):
    router = seed.device_type("router", has_subscription=True, subscription_cost="9.99")
    (device_id,) = seed.devices(router, 1)

    with gateway.transaction() as session:
        payment = SubscriptionPaymentRepository(session).create_payment(
            device_id, date(2024, 1, 10), Decimal("9.99"), "subscription"
        )
        NotificationRepository(session).create_notification(
            "subscription_due", payment.id, "due"
        )

    with gateway.transaction() as session:
        repo = SubscriptionPaymentRepository(session)
        repo.mark_paid(repo.get_by_id(payment.id), "card")

    with gateway.session() as session:
        stored = SubscriptionPaymentRepository(session).list_for_device(device_id)
        assert [(p.status, p.payment_method) for p in stored] == [("Paid", "card")]
        (notification,) = NotificationRepository(session).list_unread()
        assert notification.reference_id == payment.id
