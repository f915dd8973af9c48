from .database import PersistenceGateway, get_engine, get_sessionmaker
from .models import (
    Accessory,
    Base,
    Device,
    DeviceType,
    Notification,
    Reservation,
    ReservationAccessory,
    SubscriptionPayment,
)

__all__ = [
    "Base",
    "DeviceType",
    "Device",
    "Accessory",
    "Reservation",
    "ReservationAccessory",
    "SubscriptionPayment",
    "Notification",
    "PersistenceGateway",
    "get_sessionmaker",
    "get_engine",
]
