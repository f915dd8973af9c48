from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from rental_engine.db.models import ReservationStatus


class AccessorySelection(BaseModel):
    accessory_id: str
    quantity: int = 1


class AvailabilityResponse(BaseModel):
    device_type_id: str
    available_count: int
    total_count: int


class AccessoryLine(BaseModel):
    accessory_id: str
    name: str
    quantity: int
    rental_rate: Decimal
    cost: Decimal


class PerUnitPrice(BaseModel):
    rental: Decimal
    deposit: Decimal
    total: Decimal


class PriceBreakdown(BaseModel):
    days: int
    quantity: int
    device_rental_cost: Decimal
    accessory_cost: Decimal
    rental_cost: Decimal
    deposit: Decimal
    total: Decimal
    accessories: List[AccessoryLine] = Field(default_factory=list)
    per_unit: PerUnitPrice


class QuoteRequest(BaseModel):
    device_type_id: str
    start_at: datetime
    end_at: datetime
    quantity: int = 1
    accessories: List[AccessorySelection] = Field(default_factory=list)


class ReservationRequest(QuoteRequest):
    user_id: Optional[str] = None
    expected_total: Optional[Decimal] = Field(
        None, description="Total the client was quoted; re-validated at commit"
    )


class ReservationResult(BaseModel):
    checkout_id: str
    reservation_ids: List[str]
    price: PriceBreakdown


class ReservationStatusRequest(BaseModel):
    status: ReservationStatus


class HealthResponse(BaseModel):
    ok: bool = True


class RolloverRequest(BaseModel):
    as_of: Optional[date] = None


class RolloverResponse(BaseModel):
    as_of: date
    updated_count: int


class MarkPaidRequest(BaseModel):
    payment_method: Optional[str] = None


# Internal schemas for services
class ReservationData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    checkout_id: str
    user_id: Optional[str] = None
    device_type_id: str
    device_id: Optional[str] = None
    start_at: datetime
    end_at: datetime
    status: str
    rate: Decimal
    deposit: Decimal
    total_paid: Decimal


class DeviceData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    device_type_id: str
    condition: str
    working_state: str
    subscription_date: Optional[date] = None


class SubscriptionPaymentData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    device_id: str
    payment_date: date
    amount: Decimal
    payment_method: str
    notes: Optional[str] = None
    status: str
