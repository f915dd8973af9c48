from fastapi import APIRouter, Depends

from rental_engine.api.dependencies import get_subscription_service
from rental_engine.core.exceptions import RentalEngineException, to_http_exception
from rental_engine.core.utils import utcnow
from rental_engine.schemas import (
    MarkPaidRequest,
    RolloverRequest,
    RolloverResponse,
    SubscriptionPaymentData,
)
from rental_engine.services.subscription import SubscriptionService

router = APIRouter()


@router.post("/subscriptions/rollover", response_model=RolloverResponse)
def rollover_subscriptions(
    request: RolloverRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    as_of = request.as_of or utcnow().date()
    try:
        updated = subscription_service.rollover_due_subscriptions(as_of)
    except RentalEngineException as e:
        raise to_http_exception(e)
    return RolloverResponse(as_of=as_of, updated_count=updated)


@router.post(
    "/subscription-payments/{payment_id}/paid", response_model=SubscriptionPaymentData
)
def mark_subscription_paid(
    payment_id: str,
    request: MarkPaidRequest,
    subscription_service: SubscriptionService = Depends(get_subscription_service),
):
    try:
        return subscription_service.mark_paid(payment_id, request.payment_method)
    except RentalEngineException as e:
        raise to_http_exception(e)
