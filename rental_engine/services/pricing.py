import math
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from rental_engine.core.exceptions import NotFoundError, ValidationError
from rental_engine.core.intervals import ONE_DAY, Window
from rental_engine.core.utils import to_money
from rental_engine.db.models import Accessory, DeviceType
from rental_engine.db.repositories.accessory import AccessoryRepository
from rental_engine.db.repositories.device import DeviceTypeRepository
from rental_engine.schemas import (
    AccessoryLine,
    AccessorySelection,
    PerUnitPrice,
    PriceBreakdown,
)


def billable_days(window: Window) -> int:
    """Whole days started by the window; anything shorter than a day bills as one."""
    return max(1, math.ceil(window.duration / ONE_DAY))


def merge_selections(selections: Sequence[AccessorySelection]) -> List[AccessorySelection]:
    """Fold repeated accessories into one line, ordered by accessory id."""
    merged: Dict[str, int] = {}
    for selection in selections:
        merged[selection.accessory_id] = merged.get(selection.accessory_id, 0) + selection.quantity
    return [
        AccessorySelection(accessory_id=accessory_id, quantity=quantity)
        for accessory_id, quantity in sorted(merged.items())
    ]


def price(
    device_type: DeviceType,
    accessory_lines: Sequence[Tuple[Accessory, int]],
    quantity: int,
    window_start: datetime,
    window_end: datetime,
) -> PriceBreakdown:
    if quantity <= 0:
        raise ValidationError(f"Quantity must be positive, got {quantity}")
    window = Window(window_start, window_end)
    if window.end <= window.start:
        raise ValidationError("Window end must be after its start")

    days = billable_days(window)
    rate = to_money(device_type.rental_rate)
    unit_deposit = to_money(device_type.deposit or 0)

    lines = []
    for accessory, selected in accessory_lines:
        if selected <= 0:
            raise ValidationError(
                f"Accessory {accessory.id} quantity must be positive, got {selected}"
            )
        if selected > accessory.quantity:
            raise ValidationError(
                f"Accessory {accessory.id} quantity {selected} exceeds pool of {accessory.quantity}"
            )
        accessory_rate = to_money(accessory.rental_rate)
        lines.append(
            AccessoryLine(
                accessory_id=accessory.id,
                name=accessory.name,
                quantity=selected,
                rental_rate=accessory_rate,
                cost=accessory_rate * days * selected,
            )
        )

    device_rental_cost = rate * days * quantity
    accessory_cost = sum((line.cost for line in lines), Decimal("0.00"))
    deposit = unit_deposit * quantity
    rental_cost = device_rental_cost + accessory_cost

    return PriceBreakdown(
        days=days,
        quantity=quantity,
        device_rental_cost=device_rental_cost,
        accessory_cost=accessory_cost,
        rental_cost=rental_cost,
        deposit=deposit,
        total=rental_cost + deposit,
        accessories=lines,
        per_unit=PerUnitPrice(
            rental=rate * days,
            deposit=unit_deposit,
            total=rate * days + unit_deposit,
        ),
    )


class PricingService:
    def __init__(
        self,
        device_type_repo: DeviceTypeRepository,
        accessory_repo: AccessoryRepository,
    ):
        self.device_type_repo = device_type_repo
        self.accessory_repo = accessory_repo

    def resolve_accessories(
        self, selections: Sequence[AccessorySelection]
    ) -> List[Tuple[Accessory, int]]:
        merged = merge_selections(selections)
        accessories = self.accessory_repo.get_many(s.accessory_id for s in merged)
        lines = []
        for selection in merged:
            accessory = accessories.get(selection.accessory_id)
            if accessory is None:
                raise NotFoundError("Accessory", selection.accessory_id)
            lines.append((accessory, selection.quantity))
        return lines

    def quote(
        self,
        device_type_id: str,
        selections: Sequence[AccessorySelection],
        quantity: int,
        window_start: datetime,
        window_end: datetime,
    ) -> PriceBreakdown:
        device_type = self.device_type_repo.get_by_id(device_type_id)
        if device_type is None:
            raise NotFoundError("DeviceType", device_type_id)

        breakdown = price(
            device_type,
            self.resolve_accessories(selections),
            quantity,
            window_start,
            window_end,
        )
        logger.debug(
            f"Quoted {quantity} x {device_type_id} for {breakdown.days} day(s): total={breakdown.total}"
        )
        return breakdown
