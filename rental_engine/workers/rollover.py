import time
from datetime import date
from typing import Optional

from loguru import logger

from rental_engine import __version__
from rental_engine.config.logging import setup_logging
from rental_engine.config.settings import Settings
from rental_engine.core.circuit_breaker import CircuitBreakerConfig
from rental_engine.core.utils import utcnow
from rental_engine.db.database import PersistenceGateway
from rental_engine.db.models import Base
from rental_engine.monitoring.metrics import (
    MetricsCollector,
    init_app_info,
    start_metrics_server,
)
from rental_engine.services.subscription import SubscriptionService


def tick_once(gateway: PersistenceGateway, as_of: Optional[date] = None) -> int:
    start_time = time.time()
    as_of = as_of or utcnow().date()

    try:
        updated = SubscriptionService(gateway).rollover_due_subscriptions(as_of)
    except Exception as e:
        MetricsCollector.record_worker_error("rollover_failed")
        logger.error(f"Rollover tick failed: {e}")
        raise

    duration = time.time() - start_time
    logger.info(
        f"Rollover tick: as_of={as_of}, updated={updated}, duration={duration:.2f}s"
    )
    return updated


def main():
    settings = Settings()
    setup_logging(settings)

    start_metrics_server(settings.rollover_metrics_port)
    init_app_info(__version__, component="rollover-worker")

    cb_config = CircuitBreakerConfig(settings)
    gateway = PersistenceGateway.from_settings(settings, cb_config.get_store_breaker())
    if settings.auto_create_schema:
        Base.metadata.create_all(gateway.engine)

    logger.info(f"Starting rollover worker: tick_sec={settings.rollover_tick_sec}")
    logger.info(f"Metrics server started on port {settings.rollover_metrics_port}")

    while True:
        try:
            tick_once(gateway)
        except Exception as e:
            MetricsCollector.record_worker_error("tick_error")
            logger.error(f"Tick error: {e}")

        time.sleep(settings.rollover_tick_sec)


if __name__ == "__main__":
    main()
