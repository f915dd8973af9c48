from datetime import datetime
from threading import RLock
from typing import Dict, List, Optional

from cachetools import TTLCache
from loguru import logger

from rental_engine.config.settings import Settings
from rental_engine.realtime.feed import ChangeEvent
from rental_engine.realtime.router import ChangeRouter, Observer
from rental_engine.schemas import AvailabilityResponse
from rental_engine.services.availability import AvailabilityService

# tables whose changes can move an availability figure
WATCHED_TABLES = ("reservations", "devices", "device_types")


class CatalogService:
    """Catalog availability served from a short-lived cache.

    The figures are advisory: they are what a listing page shows, never what a
    checkout decides on. Any committed change to a watched table clears the
    cache, and the TTL bounds staleness when no router is attached.
    """

    def __init__(self, availability: AvailabilityService, settings: Settings):
        self.availability = availability
        self._cache = TTLCache(
            maxsize=settings.catalog_cache_size, ttl=settings.catalog_cache_ttl_sec
        )
        self._lock = RLock()
        self._generation = 0
        self._observers: List[Observer] = []

    def cached_availability(
        self,
        window_start: Optional[datetime] = None,
        window_end: Optional[datetime] = None,
    ) -> Dict[str, AvailabilityResponse]:
        key = (window_start, window_end)
        with self._lock:
            cached = self._cache.get(key)
            generation = self._generation
        if cached is not None:
            return cached

        result = self.availability.compute_availability_for_all_types(window_start, window_end)
        with self._lock:
            # an invalidation while computing means the figures may predate it
            if generation == self._generation:
                self._cache[key] = result
        return result

    def invalidate(self, change: Optional[ChangeEvent] = None) -> None:
        with self._lock:
            self._generation += 1
            self._cache.clear()
        if change is not None:
            logger.debug(f"Catalog cache cleared by {change.event_type.value} on {change.table}")

    def attach(self, router: ChangeRouter) -> None:
        for table in WATCHED_TABLES:
            self._observers.append(
                router.register(table, self.invalidate, on_resync=self.invalidate)
            )

    def detach(self, router: ChangeRouter) -> None:
        for observer in self._observers:
            router.unregister(observer)
        self._observers = []
