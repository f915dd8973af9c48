from fastapi import APIRouter, Depends

from rental_engine.api.dependencies import get_circuit_breaker_config
from rental_engine.core.circuit_breaker import CircuitBreakerConfig
from rental_engine.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health_check():
    return HealthResponse(ok=True)


@router.get("/health/circuit-breakers")
def circuit_breaker_health(
    cb_config: CircuitBreakerConfig = Depends(get_circuit_breaker_config),
):
    return {
        "circuit_breakers": cb_config.get_breaker_stats(),
        "status": "ok",
    }
