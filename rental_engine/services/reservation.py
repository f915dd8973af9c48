import random
import threading
import time
from typing import Callable, List, Optional

from loguru import logger
from sqlalchemy.orm import Session

from rental_engine.config.settings import Settings
from rental_engine.core.exceptions import (
    ConflictError,
    InsufficientAvailabilityError,
    NotFoundError,
    QuoteMismatchError,
    ReservationCancelledError,
    ValidationError,
)
from rental_engine.core.intervals import Window, peak_overlap
from rental_engine.core.utils import to_money, uuid4
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import Device, DeviceType, Reservation, ReservationStatus
from rental_engine.db.repositories.accessory import AccessoryRepository
from rental_engine.db.repositories.device import DeviceRepository, DeviceTypeRepository
from rental_engine.db.repositories.reservation import ReservationRepository
from rental_engine.monitoring.metrics import MetricsCollector
from rental_engine.schemas import (
    PriceBreakdown,
    ReservationData,
    ReservationRequest,
    ReservationResult,
)
from rental_engine.services.availability import availability_in_session
from rental_engine.services.pricing import PricingService, price

ALLOWED_TRANSITIONS = {
    ReservationStatus.PENDING.value: {
        ReservationStatus.ACTIVE.value,
        ReservationStatus.CANCELLED.value,
    },
    ReservationStatus.ACTIVE.value: {
        ReservationStatus.COMPLETED.value,
        ReservationStatus.CANCELLED.value,
    },
}


class ReservationService:
    """Allocates concrete devices to a checkout without overselling.

    Every attempt runs availability, unit selection, accessory allocation and
    pricing inside one transaction that first takes the device type's booking
    lock. A lost write race aborts the transaction and the whole attempt is
    retried with jittered exponential backoff.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self._max_attempts = max(1, settings.reserve_max_attempts)
        self._backoff_base_sec = settings.reserve_backoff_base_sec
        self._backoff_max_sec = settings.reserve_backoff_max_sec
        self._sleep = sleep

    def calculate_backoff_seconds(self, attempt: int) -> float:
        """Full-jitter exponential backoff: uniform(0, min(max, base * 2^(attempt-1)))."""
        window = self._backoff_base_sec * (2 ** min(attempt - 1, 8))
        return random.uniform(0, min(window, self._backoff_max_sec))

    def reserve(
        self,
        request: ReservationRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReservationResult:
        logger.info(
            f"Reserving {request.quantity} x {request.device_type_id} "
            f"for [{request.start_at}, {request.end_at})"
        )
        started = time.monotonic()
        try:
            result = self._reserve_with_retries(request, cancel_event)
        except InsufficientAvailabilityError:
            MetricsCollector.record_reservation("sold_out")
            raise
        except ConflictError:
            MetricsCollector.record_reservation("conflict")
            raise
        except ValidationError:
            MetricsCollector.record_reservation("invalid")
            raise
        except ReservationCancelledError:
            MetricsCollector.record_reservation("cancelled")
            raise
        finally:
            MetricsCollector.record_reservation_duration(time.monotonic() - started)

        MetricsCollector.record_reservation("committed", len(result.reservation_ids))
        logger.info(
            f"Checkout {result.checkout_id} committed {len(result.reservation_ids)} unit(s), "
            f"total={result.price.total}"
        )
        return result

    def _reserve_with_retries(
        self, request: ReservationRequest, cancel_event: Optional[threading.Event]
    ) -> ReservationResult:
        if request.quantity <= 0:
            raise ValidationError(f"Quantity must be positive, got {request.quantity}")
        window = Window(request.start_at, request.end_at)
        if window.end <= window.start:
            raise ValidationError("Window end must be after its start")

        for attempt in range(1, self._max_attempts + 1):
            self._check_cancelled(cancel_event)
            try:
                with self.gateway.transaction() as session:
                    result = self._reserve_once(session, request, window)
                    # last point at which a cancel leaves no trace
                    self._check_cancelled(cancel_event)
                return result
            except ConflictError as e:
                if attempt >= self._max_attempts:
                    logger.warning(
                        f"Reservation for {request.device_type_id} gave up after "
                        f"{attempt} conflicting attempt(s): {e}"
                    )
                    raise ConflictError(
                        f"Reservation conflicted {attempt} time(s); please retry"
                    ) from e
                delay = self.calculate_backoff_seconds(attempt)
                MetricsCollector.record_reservation_retry()
                logger.warning(
                    f"Write conflict on attempt {attempt} for {request.device_type_id}, "
                    f"retrying in {delay:.3f}s: {e}"
                )
                self._sleep(delay)

        raise ConflictError("Reservation retries exhausted")

    def _reserve_once(
        self, session: Session, request: ReservationRequest, window: Window
    ) -> ReservationResult:
        device_type_repo = DeviceTypeRepository(session)
        device_repo = DeviceRepository(session)
        reservation_repo = ReservationRepository(session)
        accessory_repo = AccessoryRepository(session)

        if not device_type_repo.lock_for_booking(request.device_type_id):
            raise NotFoundError("DeviceType", request.device_type_id)
        device_type = device_type_repo.get_by_id(request.device_type_id)

        availability = availability_in_session(session, request.device_type_id, window)
        if availability.available_count < request.quantity:
            raise InsufficientAvailabilityError(
                requested=request.quantity,
                available=availability.available_count,
                resource_id=request.device_type_id,
            )

        devices = device_repo.list_free_devices(
            request.device_type_id, window, request.quantity
        )
        if len(devices) < request.quantity:
            raise InsufficientAvailabilityError(
                requested=request.quantity,
                available=len(devices),
                resource_id=request.device_type_id,
            )

        pricing = PricingService(device_type_repo, accessory_repo)
        accessory_lines = pricing.resolve_accessories(request.accessories)
        # validates accessory quantities against their pools before any allocation check
        breakdown = price(
            device_type, accessory_lines, request.quantity, window.start, window.end
        )

        for accessory, selected in accessory_lines:
            accessory_repo.lock_for_booking(accessory.id)
            held = peak_overlap(
                reservation_repo.accessory_allocations(accessory.id, window), window
            )
            free = max(0, accessory.quantity - held)
            if selected > free:
                raise InsufficientAvailabilityError(
                    requested=selected,
                    available=free,
                    resource="accessory",
                    resource_id=accessory.id,
                )

        if request.expected_total is not None and to_money(
            request.expected_total
        ) != to_money(breakdown.total):
            raise QuoteMismatchError(request.expected_total, breakdown.total)

        checkout_id = uuid4()
        reservation_ids = self._write_reservations(
            reservation_repo, request, window, devices, device_type, checkout_id, breakdown
        )
        for accessory, selected in accessory_lines:
            reservation_repo.add_accessory(reservation_ids[0], accessory.id, selected)

        return ReservationResult(
            checkout_id=checkout_id, reservation_ids=reservation_ids, price=breakdown
        )

    def _write_reservations(
        self,
        reservation_repo: ReservationRepository,
        request: ReservationRequest,
        window: Window,
        devices: List[Device],
        device_type: DeviceType,
        checkout_id: str,
        breakdown: PriceBreakdown,
    ) -> List[str]:
        reservation_ids = []
        for index, device in enumerate(devices):
            total_paid = breakdown.per_unit.total
            if index == 0:
                # accessories ride on the first unit of the checkout
                total_paid += breakdown.accessory_cost
            reservation = Reservation(
                id=uuid4(),
                checkout_id=checkout_id,
                user_id=request.user_id,
                device_type_id=request.device_type_id,
                device_id=device.id,
                start_at=window.start,
                end_at=window.end,
                status=ReservationStatus.PENDING.value,
                rate=to_money(device_type.rental_rate),
                deposit=breakdown.per_unit.deposit,
                total_paid=total_paid,
            )
            reservation_repo.create_reservation(reservation)
            reservation_ids.append(reservation.id)
            logger.debug(
                f"Reserved device {device.id} for checkout {checkout_id} "
                f"[{window.start}, {window.end})"
            )
        return reservation_ids

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ReservationCancelledError("Reservation cancelled by caller")

    def get_reservation(self, reservation_id: str) -> ReservationData:
        with self.gateway.session() as session:
            reservation = ReservationRepository(session).get_by_id(reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation", reservation_id)
            return ReservationData.model_validate(reservation)

    def transition(self, reservation_id: str, status: str) -> ReservationData:
        try:
            status = ReservationStatus(status).value
        except ValueError as e:
            raise ValidationError(f"Unknown reservation status: {status}") from e
        with self.gateway.transaction() as session:
            repo = ReservationRepository(session)
            reservation = repo.get_by_id(reservation_id)
            if reservation is None:
                raise NotFoundError("Reservation", reservation_id)
            if status not in ALLOWED_TRANSITIONS.get(reservation.status, set()):
                raise ValidationError(
                    f"Reservation {reservation_id} cannot move from {reservation.status} to {status}"
                )
            repo.update_status(reservation, status)
            return ReservationData.model_validate(reservation)

    def cancel(self, reservation_id: str) -> ReservationData:
        return self.transition(reservation_id, ReservationStatus.CANCELLED.value)
