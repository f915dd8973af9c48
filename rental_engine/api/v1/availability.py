from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends

from rental_engine.api.dependencies import get_availability_service, get_catalog_service
from rental_engine.core.exceptions import RentalEngineException, to_http_exception
from rental_engine.schemas import AvailabilityResponse
from rental_engine.services.availability import AvailabilityService
from rental_engine.services.catalog import CatalogService

router = APIRouter()


@router.get("/availability", response_model=List[AvailabilityResponse])
def list_availability(
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    catalog: CatalogService = Depends(get_catalog_service),
):
    """Catalog view of every device type; served from cache and advisory only."""
    try:
        return list(catalog.cached_availability(start_at, end_at).values())
    except RentalEngineException as e:
        raise to_http_exception(e)


@router.get("/availability/{device_type_id}", response_model=AvailabilityResponse)
def get_availability(
    device_type_id: str,
    start_at: Optional[datetime] = None,
    end_at: Optional[datetime] = None,
    availability_service: AvailabilityService = Depends(get_availability_service),
):
    try:
        return availability_service.compute_availability(device_type_id, start_at, end_at)
    except RentalEngineException as e:
        raise to_http_exception(e)
