from datetime import date
from decimal import Decimal
from typing import List, Optional

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from rental_engine.core.utils import uuid4
from rental_engine.db.models import Notification, PaymentStatus, SubscriptionPayment


class SubscriptionPaymentRepository:
    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, payment_id: str) -> Optional[SubscriptionPayment]:
        return self.session.get(SubscriptionPayment, payment_id)

    def create_payment(
        self,
        device_id: str,
        payment_date: date,
        amount: Decimal,
        payment_method: str,
        status: str = PaymentStatus.DUE.value,
        notes: Optional[str] = None,
    ) -> SubscriptionPayment:
        payment = SubscriptionPayment(
            id=uuid4(),
            device_id=device_id,
            payment_date=payment_date,
            amount=amount,
            payment_method=payment_method,
            notes=notes,
            status=status,
        )
        self.session.add(payment)
        self.session.flush()
        return payment

    def list_for_device(self, device_id: str) -> List[SubscriptionPayment]:
        return list(
            self.session.execute(
                select(SubscriptionPayment)
                .where(SubscriptionPayment.device_id == device_id)
                .order_by(SubscriptionPayment.payment_date)
            ).scalars()
        )

    def mark_paid(self, payment: SubscriptionPayment, payment_method: Optional[str]) -> None:
        payment.status = PaymentStatus.PAID.value
        if payment_method:
            payment.payment_method = payment_method
        self.session.flush()
        logger.info(f"Subscription payment {payment.id} marked as paid")


class NotificationRepository:
    def __init__(self, session: Session):
        self.session = session

    def create_notification(self, type_: str, reference_id: str, message: str) -> Notification:
        notification = Notification(
            id=uuid4(), type=type_, reference_id=reference_id, message=message
        )
        self.session.add(notification)
        self.session.flush()
        return notification

    def list_unread(self) -> List[Notification]:
        return list(
            self.session.execute(
                select(Notification)
                .where(Notification.is_read.is_(False))
                .order_by(Notification.created_at)
            ).scalars()
        )
