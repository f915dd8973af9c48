from datetime import date
from decimal import Decimal
from typing import List, Optional

from loguru import logger

from rental_engine.core.exceptions import NotFoundError, ValidationError
from rental_engine.core.utils import add_months, to_money, utcnow
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import Device, DeviceType, PaymentStatus
from rental_engine.db.repositories.device import DeviceRepository
from rental_engine.db.repositories.subscription import (
    NotificationRepository,
    SubscriptionPaymentRepository,
)
from rental_engine.monitoring.metrics import MetricsCollector
from rental_engine.schemas import DeviceData, SubscriptionPaymentData

ROLLOVER_PAYMENT_METHOD = "subscription"
SUBSCRIPTION_DUE = "subscription_due"


class SubscriptionService:
    """Rolls recurring device subscriptions forward and records their payments."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def rollover_due_subscriptions(self, as_of: Optional[date] = None) -> int:
        """Advance every due subscription date past ``as_of``.

        One Due payment (and notification) is written per billing cycle that
        fell due, so a device left dormant for three months gets three.

        Returns:
            int: number of devices whose subscription date moved
        """
        as_of = as_of or utcnow().date()
        updated = 0
        cycles = 0

        with self.gateway.transaction() as session:
            device_repo = DeviceRepository(session)
            payment_repo = SubscriptionPaymentRepository(session)
            notification_repo = NotificationRepository(session)

            for device in device_repo.list_due_subscriptions(as_of):
                device_type = session.get(DeviceType, device.device_type_id)
                device_cycles = self._roll_device(
                    device, device_type, as_of, payment_repo, notification_repo
                )
                cycles += device_cycles
                updated += 1
            session.flush()

        MetricsCollector.record_rollovers(cycles)
        if updated:
            logger.info(
                f"Subscription rollover as of {as_of}: devices={updated}, cycles={cycles}"
            )
        return updated

    def _roll_device(
        self,
        device: Device,
        device_type: DeviceType,
        as_of: date,
        payment_repo: SubscriptionPaymentRepository,
        notification_repo: NotificationRepository,
    ) -> int:
        anchor = device.subscription_date
        amount = to_money(device_type.subscription_cost or 0)
        months = 0
        due_date = anchor
        while due_date <= as_of:
            payment = payment_repo.create_payment(
                device_id=device.id,
                payment_date=due_date,
                amount=amount,
                payment_method=ROLLOVER_PAYMENT_METHOD,
                status=PaymentStatus.DUE.value,
            )
            notification_repo.create_notification(
                SUBSCRIPTION_DUE,
                payment.id,
                f"Subscription of {amount} for {device.name} was due on {due_date}",
            )
            months += 1
            # offsets from the anchor date keep a 31st anchor from drifting to the 28th
            due_date = add_months(anchor, months)

        device.subscription_date = due_date
        logger.debug(
            f"Device {device.id} subscription {anchor} -> {due_date} ({months} cycle(s))"
        )
        return months

    def record_payment(
        self,
        device_id: str,
        amount: Decimal,
        payment_method: str,
        payment_date: Optional[date] = None,
        notes: Optional[str] = None,
    ) -> SubscriptionPaymentData:
        if to_money(amount) <= 0:
            raise ValidationError(f"Payment amount must be positive, got {amount}")
        with self.gateway.transaction() as session:
            if DeviceRepository(session).get_by_id(device_id) is None:
                raise NotFoundError("Device", device_id)
            payment = SubscriptionPaymentRepository(session).create_payment(
                device_id=device_id,
                payment_date=payment_date or utcnow().date(),
                amount=to_money(amount),
                payment_method=payment_method,
                status=PaymentStatus.PAID.value,
                notes=notes,
            )
            return SubscriptionPaymentData.model_validate(payment)

    def mark_paid(
        self, payment_id: str, payment_method: Optional[str] = None
    ) -> SubscriptionPaymentData:
        with self.gateway.transaction() as session:
            repo = SubscriptionPaymentRepository(session)
            payment = repo.get_by_id(payment_id)
            if payment is None:
                raise NotFoundError("SubscriptionPayment", payment_id)
            if payment.status != PaymentStatus.PAID.value:
                repo.mark_paid(payment, payment_method)
            return SubscriptionPaymentData.model_validate(payment)

    def list_payments(self, device_id: str) -> List[SubscriptionPaymentData]:
        with self.gateway.session() as session:
            payments = SubscriptionPaymentRepository(session).list_for_device(device_id)
            return [SubscriptionPaymentData.model_validate(p) for p in payments]


class DeviceService:
    """Device listings; each listing first sweeps due subscriptions.

    The sweep is lazy: dates are only as fresh as the last listing (or the last
    run of the rollover worker).
    """

    def __init__(self, gateway: PersistenceGateway, subscriptions: SubscriptionService):
        self.gateway = gateway
        self.subscriptions = subscriptions

    def list_devices(
        self, device_type_id: Optional[str] = None, as_of: Optional[date] = None
    ) -> List[DeviceData]:
        self.subscriptions.rollover_due_subscriptions(as_of)
        with self.gateway.session() as session:
            devices = DeviceRepository(session).list_devices(device_type_id)
            return [DeviceData.model_validate(d) for d in devices]
