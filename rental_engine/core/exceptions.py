from typing import Optional

from fastapi import HTTPException


class RentalEngineException(Exception):
    pass


class ValidationError(RentalEngineException):
    pass


class QuoteMismatchError(ValidationError):
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Quoted total {expected} no longer matches price {actual}")


class NotFoundError(RentalEngineException):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class InsufficientAvailabilityError(RentalEngineException):
    def __init__(
        self,
        requested: int,
        available: int,
        resource: str = "device_type",
        resource_id: Optional[str] = None,
    ):
        self.requested = requested
        self.available = available
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(
            f"Not enough {resource} {resource_id or ''} available: "
            f"requested={requested}, available={available}"
        )


class ConflictError(RentalEngineException):
    pass


class PersistenceError(RentalEngineException):
    pass


class ReservationCancelledError(RentalEngineException):
    pass


# Errors that describe the request, not the health of the store
BUSINESS_ERRORS = (
    ValidationError,
    NotFoundError,
    InsufficientAvailabilityError,
    ConflictError,
    ReservationCancelledError,
)


def validation_exception(exc: ValidationError):
    return HTTPException(status_code=422, detail=str(exc))


def not_found_exception(exc: NotFoundError):
    return HTTPException(status_code=404, detail=str(exc))


def sold_out_exception(exc: InsufficientAvailabilityError):
    return HTTPException(
        status_code=409,
        detail={
            "error": "sold_out",
            "resource": exc.resource,
            "resource_id": exc.resource_id,
            "requested": exc.requested,
            "available": exc.available,
        },
    )


def conflict_exception(exc: ConflictError):
    return HTTPException(status_code=409, detail={"error": "conflict", "message": str(exc)})


def persistence_exception(exc: PersistenceError):
    return HTTPException(status_code=503, detail="Store unavailable")


def cancelled_exception():
    return HTTPException(status_code=499, detail="Reservation cancelled")


def to_http_exception(exc: RentalEngineException) -> HTTPException:
    if isinstance(exc, ValidationError):
        return validation_exception(exc)
    if isinstance(exc, NotFoundError):
        return not_found_exception(exc)
    if isinstance(exc, InsufficientAvailabilityError):
        return sold_out_exception(exc)
    if isinstance(exc, ConflictError):
        return conflict_exception(exc)
    if isinstance(exc, PersistenceError):
        return persistence_exception(exc)
    if isinstance(exc, ReservationCancelledError):
        return cancelled_exception()
    return HTTPException(status_code=500, detail=str(exc))
