from fastapi import Depends, Request

from rental_engine.config.settings import Settings
from rental_engine.core.circuit_breaker import CircuitBreakerConfig
from rental_engine.db.database import PersistenceGateway
from rental_engine.services.availability import AvailabilityService
from rental_engine.services.catalog import CatalogService
from rental_engine.services.reservation import ReservationService
from rental_engine.services.subscription import DeviceService, SubscriptionService


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_gateway(request: Request) -> PersistenceGateway:
    return request.app.state.gateway


def get_circuit_breaker_config(request: Request) -> CircuitBreakerConfig:
    return request.app.state.cb_config


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog


def get_availability_service(
    gateway: PersistenceGateway = Depends(get_gateway),
) -> AvailabilityService:
    return AvailabilityService(gateway)


def get_reservation_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
) -> ReservationService:
    return ReservationService(gateway, settings)


def get_subscription_service(
    gateway: PersistenceGateway = Depends(get_gateway),
) -> SubscriptionService:
    return SubscriptionService(gateway)


def get_device_service(
    gateway: PersistenceGateway = Depends(get_gateway),
    subscriptions: SubscriptionService = Depends(get_subscription_service),
) -> DeviceService:
    return DeviceService(gateway, subscriptions)
