from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class WorkingState(str, Enum):
    WORKING = "Working"
    NOT_WORKING = "NotWorking"
    UNDER_REPAIR = "UnderRepair"


class ReservationStatus(str, Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


# Reservations in these states hold their unit and accessories
HOLDING_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.ACTIVE.value)


class PaymentStatus(str, Enum):
    DUE = "Due"
    PAID = "Paid"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DeviceType(Base):
    __tablename__ = "device_types"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    rental_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    deposit: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    has_subscription: Mapped[bool] = mapped_column(Boolean, default=False)
    subscription_cost: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    # bumped by every checkout; the UPDATE doubles as the per-type booking lock
    booking_version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


class Device(Base):
    __tablename__ = "devices"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    device_type_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("device_types.id", ondelete="RESTRICT"), index=True
    )
    condition: Mapped[str] = mapped_column(Text, default="")
    working_state: Mapped[str] = mapped_column(
        String(16), default=WorkingState.WORKING.value
    )  # Working / NotWorking / UnderRepair
    subscription_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


class Accessory(Base):
    __tablename__ = "accessories"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    rental_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    quantity: Mapped[int] = mapped_column(Integer, default=0)  # pool size
    booking_version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    checkout_id: Mapped[str] = mapped_column(String(64), index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    device_type_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("device_types.id", ondelete="RESTRICT")
    )
    device_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("devices.id", ondelete="RESTRICT"), nullable=True
    )
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(
        String(16), default=ReservationStatus.PENDING.value
    )  # Pending / Active / Completed / Cancelled
    rate: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    deposit: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    total_paid: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


Index("ix_reservations_device_status", Reservation.device_id, Reservation.status)
Index(
    "ix_reservations_type_status_window",
    Reservation.device_type_id,
    Reservation.status,
    Reservation.start_at,
    Reservation.end_at,
)


class ReservationAccessory(Base):
    __tablename__ = "reservation_accessories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reservation_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("reservations.id", ondelete="CASCADE"), index=True
    )
    accessory_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("accessories.id", ondelete="RESTRICT"), index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)


class SubscriptionPayment(Base):
    __tablename__ = "subscription_payments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    device_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("devices.id", ondelete="CASCADE"), index=True
    )
    payment_date: Mapped[date] = mapped_column(Date, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    payment_method: Mapped[str] = mapped_column(String(64))
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), default=PaymentStatus.DUE.value
    )  # Due / Paid
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_now, onupdate=_now
    )


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    type: Mapped[str] = mapped_column(String(32), index=True)  # subscription_due
    reference_id: Mapped[str] = mapped_column(String(64), index=True)
    message: Mapped[str] = mapped_column(Text)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
