from fastapi import APIRouter, Depends

from rental_engine.api.dependencies import get_gateway, get_reservation_service
from rental_engine.core.exceptions import RentalEngineException, to_http_exception
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.repositories.accessory import AccessoryRepository
from rental_engine.db.repositories.device import DeviceTypeRepository
from rental_engine.schemas import (
    PriceBreakdown,
    QuoteRequest,
    ReservationData,
    ReservationRequest,
    ReservationResult,
    ReservationStatusRequest,
)
from rental_engine.services.pricing import PricingService
from rental_engine.services.reservation import ReservationService

router = APIRouter()


@router.post("/quotes", response_model=PriceBreakdown)
def create_quote(
    request: QuoteRequest,
    gateway: PersistenceGateway = Depends(get_gateway),
):
    try:
        with gateway.session() as session:
            pricing = PricingService(DeviceTypeRepository(session), AccessoryRepository(session))
            return pricing.quote(
                request.device_type_id,
                request.accessories,
                request.quantity,
                request.start_at,
                request.end_at,
            )
    except RentalEngineException as e:
        raise to_http_exception(e)


@router.post("/reservations", response_model=ReservationResult, status_code=201)
def create_reservation(
    request: ReservationRequest,
    reservation_service: ReservationService = Depends(get_reservation_service),
):
    try:
        return reservation_service.reserve(request)
    except RentalEngineException as e:
        raise to_http_exception(e)


@router.get("/reservations/{reservation_id}", response_model=ReservationData)
def get_reservation(
    reservation_id: str,
    reservation_service: ReservationService = Depends(get_reservation_service),
):
    try:
        return reservation_service.get_reservation(reservation_id)
    except RentalEngineException as e:
        raise to_http_exception(e)


@router.post("/reservations/{reservation_id}/status", response_model=ReservationData)
def change_reservation_status(
    reservation_id: str,
    request: ReservationStatusRequest,
    reservation_service: ReservationService = Depends(get_reservation_service),
):
    try:
        return reservation_service.transition(reservation_id, request.status.value)
    except RentalEngineException as e:
        raise to_http_exception(e)
