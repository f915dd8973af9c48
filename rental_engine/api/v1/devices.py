from typing import List, Optional

from fastapi import APIRouter, Depends

from rental_engine.api.dependencies import get_device_service, get_subscription_service
from rental_engine.core.exceptions import RentalEngineException, to_http_exception
from rental_engine.schemas import DeviceData, SubscriptionPaymentData
from rental_engine.services.subscription import DeviceService, SubscriptionService

router = APIRouter()


@router.get("/devices", response_model=List[DeviceData])
def list_devices(
    device_type_id: Optional[str] = None,
    device_service: DeviceService = Depends(get_device_service),
):
    try:
        return device_service.list_devices(device_type_id)
    except RentalEngineException as e:
        raise to_http_exception(e)


@router.get(
    "/devices/{device_id}/subscription-payments",
    response_model=List[SubscriptionPaymentData],
)
def list_subscription_payments(
    device_id: str,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return subscription_service.list_payments(device_id)
    except RentalEngineException as e:
        raise to_http_exception(e)
