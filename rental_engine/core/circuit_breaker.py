from typing import Any, Dict

import pybreaker
from loguru import logger

from rental_engine.config.settings import Settings
from rental_engine.core.exceptions import BUSINESS_ERRORS
from rental_engine.monitoring.metrics import MetricsCollector


class LoggingCircuitBreakerListener(pybreaker.CircuitBreakerListener):
    def state_change(self, cb, old_state, new_state) -> None:
        old_name = getattr(old_state, "name", old_state)
        new_name = getattr(new_state, "name", new_state)
        logger.warning(
            f"Circuit Breaker '{cb.name}' state changed: {old_name} -> {new_name}. "
            f"Failures: {cb.fail_counter}/{cb.fail_max}"
        )
        MetricsCollector.record_circuit_breaker_state(cb.name, str(new_name))

    def failure(self, cb, exc) -> None:  # noqa: ARG002
        MetricsCollector.record_circuit_breaker_failure(cb.name)


class CircuitBreakerConfig:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._breakers: Dict[str, pybreaker.CircuitBreaker] = {}
        self._listener = LoggingCircuitBreakerListener()

    def _make_breaker(
        self,
        name: str,
        fail_max: int,
        reset_timeout: int,
        exclude: tuple[type[BaseException], ...] = (),
    ) -> pybreaker.CircuitBreaker:
        return pybreaker.CircuitBreaker(
            fail_max=fail_max,
            reset_timeout=reset_timeout,
            exclude=list(exclude),
            name=name,
            listeners=[self._listener],
        )

    def get_store_breaker(self) -> pybreaker.CircuitBreaker:
        if "store" not in self._breakers:
            # business outcomes and write races say nothing about store health
            self._breakers["store"] = self._make_breaker(
                name="store_operations",
                fail_max=self.settings.cb_store_fail_max,
                reset_timeout=self.settings.cb_store_reset_timeout,
                exclude=BUSINESS_ERRORS,
            )
        return self._breakers["store"]

    def get_breaker_stats(self) -> Dict[str, Dict[str, Any]]:
        stats: Dict[str, Dict[str, Any]] = {}
        for name, breaker in self._breakers.items():
            stats[name] = {
                "state": breaker.current_state,
                "fail_counter": breaker.fail_counter,
                "fail_max": breaker.fail_max,
                "reset_timeout": breaker.reset_timeout,
            }
        return stats
