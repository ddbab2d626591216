"""
Fee Calculator - delivery price from distance, weight, fragility and payment type.

    fee = BASE_FEE + km * PER_KM_RATE + kg * PER_KG_RATE + (FRAGILE_SURCHARGE if fragile)
    fee += round(fee * COD_FEE_PERCENT) for cash on delivery
    return round(fee)

Arithmetic is done in Decimal and rounded half-up only at the two points
above, so 0.1 km steps never pick up float error.
"""
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from delivery_market.core.config import settings
from delivery_market.core.exceptions import ValidationError
from delivery_market.db.models.delivery import PaymentType
from delivery_market.domain.snapshots import Coordinate

EARTH_RADIUS_KM = 6371.0


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


@dataclass(frozen=True)
class FeeBreakdown:
    """Fee components as shown to the seller before creating a delivery"""
    base: Decimal
    distance: Decimal
    weight: Decimal
    fragile: Decimal
    cod: int
    total: int

    @property
    def subtotal(self) -> Decimal:
        return self.base + self.distance + self.weight + self.fragile


def _validate(distance_km: float, weight_kg: float) -> None:
    if distance_km is None or not math.isfinite(distance_km) or distance_km < 0:
        raise ValidationError("distance_km must be a finite number, zero or positive", field="distance_km")
    if weight_kg is None or not math.isfinite(weight_kg) or weight_kg <= 0:
        raise ValidationError("weight_kg must be a finite positive number", field="weight_kg")


def fee_breakdown(
    distance_km: float,
    weight_kg: float,
    fragile: bool,
    payment_type: PaymentType,
) -> FeeBreakdown:
    _validate(distance_km, weight_kg)

    base = Decimal(settings.BASE_FEE)
    distance = _decimal(distance_km) * settings.PER_KM_RATE
    weight = _decimal(weight_kg) * settings.PER_KG_RATE
    fragile_part = Decimal(settings.FRAGILE_SURCHARGE) if fragile else Decimal(0)

    subtotal = base + distance + weight + fragile_part
    cod = 0
    if payment_type == PaymentType.CASH_ON_DELIVERY:
        cod = _round(subtotal * _decimal(settings.COD_FEE_PERCENT))

    return FeeBreakdown(
        base=base,
        distance=distance,
        weight=weight,
        fragile=fragile_part,
        cod=cod,
        total=_round(subtotal + cod),
    )


def compute_fee(
    distance_km: float,
    weight_kg: float,
    fragile: bool,
    payment_type: PaymentType,
) -> int:
    """Integer fee in currency units. Raises ValidationError on invalid distance or weight."""
    return fee_breakdown(distance_km, weight_kg, fragile, payment_type).total


def estimate_distance_km(
    pickup: Optional[Coordinate],
    dropoff: Optional[Coordinate],
) -> float:
    """
    Great-circle (haversine) distance rounded to 0.1 km.

    Falls back to DEFAULT_DISTANCE_KM when either end has no coordinates;
    real routing is done elsewhere.
    """
    if pickup is None or dropoff is None:
        return settings.DEFAULT_DISTANCE_KM

    d_lat = math.radians(dropoff.lat - pickup.lat)
    d_lng = math.radians(dropoff.lng - pickup.lng)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(pickup.lat))
        * math.cos(math.radians(dropoff.lat))
        * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)
