from .accessory import AccessoryRepository
from .device import DeviceRepository, DeviceTypeRepository
from .reservation import ReservationRepository
from .subscription import NotificationRepository, SubscriptionPaymentRepository

__all__ = [
    "AccessoryRepository",
    "DeviceRepository",
    "DeviceTypeRepository",
    "ReservationRepository",
    "SubscriptionPaymentRepository",
    "NotificationRepository",
]
