from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from rental_engine import __version__
from rental_engine.api.v1 import availability, changes, devices, health, reservations, subscriptions
from rental_engine.config.logging import setup_logging
from rental_engine.config.settings import Settings
from rental_engine.core.circuit_breaker import CircuitBreakerConfig
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import Base
from rental_engine.monitoring.metrics import init_app_info, setup_instrumentator
from rental_engine.realtime.router import ChangeRouter
from rental_engine.services.availability import AvailabilityService
from rental_engine.services.catalog import CatalogService


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting rental-engine service")

    settings: Settings = app.state.settings
    cb_config = CircuitBreakerConfig(settings)
    gateway = PersistenceGateway.from_settings(settings, cb_config.get_store_breaker())
    if settings.auto_create_schema:
        Base.metadata.create_all(gateway.engine)

    change_router = ChangeRouter(
        gateway.feed, reconnect_delay_sec=settings.change_router_reconnect_sec
    )
    catalog = CatalogService(AvailabilityService(gateway), settings)
    catalog.attach(change_router)
    change_router.start()

    app.state.cb_config = cb_config
    app.state.gateway = gateway
    app.state.change_router = change_router
    app.state.catalog = catalog

    yield

    logger.info("Shutting down rental-engine service")
    catalog.detach(change_router)
    change_router.stop()
    gateway.engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    setup_logging(settings)

    app = FastAPI(
        title="Rental Engine",
        description="Availability, pricing and booking for rentable device inventory",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    if settings.metrics_enabled:
        instrumentator = setup_instrumentator()
        instrumentator.instrument(app).expose(app)
        init_app_info(__version__)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router, prefix="/api/v1", tags=["health"])
    app.include_router(availability.router, prefix="/api/v1", tags=["availability"])
    app.include_router(reservations.router, prefix="/api/v1", tags=["reservations"])
    app.include_router(devices.router, prefix="/api/v1", tags=["devices"])
    app.include_router(subscriptions.router, prefix="/api/v1", tags=["subscriptions"])
    app.include_router(changes.router, prefix="/api/v1", tags=["changes"])

    return app


def main():
    import uvicorn

    uvicorn.run(
        "rental_engine.main:app",
        host="0.0.0.0",
        port=8000,
        log_config=None,
    )


app = create_app()


if __name__ == "__main__":
    main()
