from prometheus_client import Counter, Gauge, Histogram, Info, start_http_server
from prometheus_fastapi_instrumentator import Instrumentator

SERVICE_NAME = "rental-engine"

# Business metrics
reservations_total = Counter(
    "rental_engine_reservations_total",
    "Reservation attempts by outcome",
    ["service", "outcome"],  # outcome=committed/sold_out/conflict/invalid/cancelled
)

reserved_units_total = Counter(
    "rental_engine_reserved_units_total",
    "Device units committed to reservations",
    ["service"],
)

reservation_retries_total = Counter(
    "rental_engine_reservation_retries_total",
    "Reservation transactions retried after a write conflict",
    ["service"],
)

reservation_duration_seconds = Histogram(
    "rental_engine_reservation_duration_seconds",
    "Wall time of a reserve call including retries",
    ["service"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

availability_queries_total = Counter(
    "rental_engine_availability_queries_total",
    "Availability computations",
    ["service", "scope"],  # scope=single/all
)

subscription_rollovers_total = Counter(
    "rental_engine_subscription_rollovers_total",
    "Subscription billing cycles rolled forward",
    ["service"],
)

# Change propagation
change_events_dispatched_total = Counter(
    "rental_engine_change_events_dispatched_total",
    "Change events delivered to observers",
    ["service", "table"],
)

change_events_dropped_total = Counter(
    "rental_engine_change_events_dropped_total",
    "Change events dropped by a full subscriber buffer",
    ["service"],
)

observer_errors_total = Counter(
    "rental_engine_observer_errors_total",
    "Exceptions raised by change observers",
    ["service", "table"],
)

registered_observers = Gauge(
    "rental_engine_registered_observers",
    "Currently registered change observers",
    ["service"],
)

# Technical metrics
circuit_breaker_state = Gauge(
    "rental_engine_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half_open)",
    ["service", "circuit_name"],
)

circuit_breaker_failures = Counter(
    "rental_engine_circuit_breaker_failures_total",
    "Total circuit breaker failures",
    ["service", "circuit_name"],
)

worker_errors_total = Counter(
    "rental_engine_worker_errors_total",
    "Total worker errors",
    ["service", "error_type"],
)

# Application info
app_info = Info("rental_engine_app_info", "Application information")


def setup_instrumentator() -> Instrumentator:
    return Instrumentator(
        should_group_status_codes=False,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/metrics", "/api/v1/health"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )


def init_app_info(version: str = "0.1.0", component: str = "api"):
    app_info.info({"version": version, "service": SERVICE_NAME, "component": component})


def start_metrics_server(port: int = 8001):
    start_http_server(port)


class MetricsCollector:
    @staticmethod
    def record_reservation(outcome: str, units: int = 0):
        reservations_total.labels(service=SERVICE_NAME, outcome=outcome).inc()
        if units:
            reserved_units_total.labels(service=SERVICE_NAME).inc(units)

    @staticmethod
    def record_reservation_retry():
        reservation_retries_total.labels(service=SERVICE_NAME).inc()

    @staticmethod
    def record_reservation_duration(duration: float):
        reservation_duration_seconds.labels(service=SERVICE_NAME).observe(duration)

    @staticmethod
    def record_availability_query(scope: str):
        availability_queries_total.labels(service=SERVICE_NAME, scope=scope).inc()

    @staticmethod
    def record_rollovers(cycles: int):
        if cycles:
            subscription_rollovers_total.labels(service=SERVICE_NAME).inc(cycles)

    @staticmethod
    def record_change_dispatched(table: str):
        change_events_dispatched_total.labels(service=SERVICE_NAME, table=table).inc()

    @staticmethod
    def record_change_dropped():
        change_events_dropped_total.labels(service=SERVICE_NAME).inc()

    @staticmethod
    def record_observer_error(table: str):
        observer_errors_total.labels(service=SERVICE_NAME, table=table).inc()

    @staticmethod
    def set_registered_observers(count: int):
        registered_observers.labels(service=SERVICE_NAME).set(count)

    @staticmethod
    def record_circuit_breaker_state(circuit_name: str, state: str):
        state_value = {"closed": 0, "open": 1, "half-open": 2, "half_open": 2}.get(state, 0)
        circuit_breaker_state.labels(
            service=SERVICE_NAME, circuit_name=circuit_name
        ).set(state_value)

    @staticmethod
    def record_circuit_breaker_failure(circuit_name: str):
        circuit_breaker_failures.labels(
            service=SERVICE_NAME, circuit_name=circuit_name
        ).inc()

    @staticmethod
    def record_worker_error(error_type: str):
        worker_errors_total.labels(service=SERVICE_NAME, error_type=error_type).inc()
