"""
Fare & Surge Estimator  (Strategy Pattern for promo discounts)
==============================================================

Formula
-------
subtotal = max(min_fare, base_fare + per_km x distance_km + per_minute x duration_min)
surged   = subtotal x surge_multiplier
fee      = surged x platform_fee_rate
tax      = (surged + fee) x tax_rate
total    = round(surged + fee + tax)

* **surge_multiplier** comes from a demand classification
  {low: 1.0, medium: 1.2, high: 1.5, very_high: 2.0} derived from the
  time of day and weekend heuristics in ``classify_demand``.
* **Promo discount** is either a percentage (capped by the promo's
  ``max_discount``) or a fixed amount, never more than the total fare.

Complexity: O(1) per estimate.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone, tzinfo
from typing import Optional

from .entities import PromoCode
from .enums import DemandLevel, DiscountType, TrafficLevel, VehicleClass
from .errors import ValidationError


@dataclass(frozen=True)
class FareConfig:
    base_fare: float
    per_km: float
    per_minute: float
    min_fare: float


DEFAULT_FARE_CONFIG: dict[VehicleClass, FareConfig] = {
    VehicleClass.BIKE: FareConfig(base_fare=20, per_km=8, per_minute=1, min_fare=30),
    VehicleClass.AUTO: FareConfig(base_fare=30, per_km=12, per_minute=1.5, min_fare=50),
    VehicleClass.CAR: FareConfig(base_fare=50, per_km=15, per_minute=2, min_fare=80),
}

SURGE_BY_DEMAND: dict[DemandLevel, float] = {
    DemandLevel.LOW: 1.0,
    DemandLevel.MEDIUM: 1.2,
    DemandLevel.HIGH: 1.5,
    DemandLevel.VERY_HIGH: 2.0,
}

TRAFFIC_SPEED_KMH: dict[TrafficLevel, float] = {
    TrafficLevel.LOW: 40.0,
    TrafficLevel.MEDIUM: 30.0,
    TrafficLevel.HIGH: 20.0,
}


@dataclass(frozen=True)
class FareBreakdown:
    vehicle_class: VehicleClass
    base_fare: float
    distance_charge: float
    time_charge: float
    surge_multiplier: float
    surge_amount: float
    platform_fee: float
    tax: float
    total_fare: float
    discount: float = 0.0
    promo_code: Optional[str] = None
    currency: str = "INR"


def round_half_up(value: float, digits: int = 0) -> float:
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


# ── Demand / surge ────────────────────────────────────────────────────


def classify_demand(when: datetime, tz: Optional[tzinfo] = None) -> DemandLevel:
    """Time-of-day / weekend heuristic used when no zone data is available.

    Hours are local wall-clock hours: an aware *when* is converted to *tz*
    first.  Without *tz* the hour is read as given.
    """
    if tz is not None and when.tzinfo is not None:
        when = when.astimezone(tz)
    hour = when.hour
    is_weekend = when.weekday() >= 5

    # Peak hours: 8-11 AM, 5-9 PM
    if 8 <= hour < 11 or 17 <= hour < 21:
        return DemandLevel.HIGH if is_weekend else DemandLevel.VERY_HIGH
    # Late night: 11 PM - 5 AM
    if hour >= 23 or hour <= 5:
        return DemandLevel.MEDIUM
    if is_weekend and 11 <= hour < 17:
        return DemandLevel.HIGH
    return DemandLevel.LOW


def surge_multiplier_for(demand: DemandLevel) -> float:
    return SURGE_BY_DEMAND.get(demand, 1.0)


def estimate_eta_minutes(
    distance_km: float, traffic: TrafficLevel = TrafficLevel.MEDIUM
) -> int:
    speed = TRAFFIC_SPEED_KMH[traffic]
    return math.ceil(distance_km / speed * 60)


# ── Discount strategies ───────────────────────────────────────────────


class DiscountStrategy(ABC):
    @abstractmethod
    def discount_for(self, total_fare: float) -> float: ...


class PercentageDiscount(DiscountStrategy):
    def __init__(self, percent: float, ceiling: Optional[float] = None):
        self.percent = percent
        self.ceiling = ceiling

    def discount_for(self, total_fare: float) -> float:
        discount = total_fare * self.percent / 100
        if self.ceiling:
            discount = min(discount, self.ceiling)
        return discount


class FixedDiscount(DiscountStrategy):
    def __init__(self, amount: float):
        self.amount = amount

    def discount_for(self, total_fare: float) -> float:
        return self.amount


def discount_strategy_for(promo: PromoCode) -> DiscountStrategy:
    if promo.discount_type == DiscountType.PERCENTAGE:
        return PercentageDiscount(promo.discount_value, promo.max_discount)
    return FixedDiscount(promo.discount_value)


def validate_promo(
    promo: PromoCode,
    total_fare: float,
    vehicle_class: Optional[VehicleClass] = None,
    now: Optional[datetime] = None,
) -> None:
    """Raise ``ValidationError`` if *promo* cannot be applied to this fare."""
    now = now or datetime.now(timezone.utc)
    if not promo.is_active:
        raise ValidationError(f"Promo code {promo.code} is not active")
    if promo.valid_from and now < promo.valid_from:
        raise ValidationError(f"Promo code {promo.code} is not yet valid")
    if promo.valid_until and now > promo.valid_until:
        raise ValidationError(f"Promo code {promo.code} has expired")
    if promo.max_uses is not None and promo.current_uses >= promo.max_uses:
        raise ValidationError(f"Promo code {promo.code} usage limit reached")
    if (
        vehicle_class is not None
        and promo.applicable_vehicle_classes
        and vehicle_class not in promo.applicable_vehicle_classes
    ):
        raise ValidationError(
            f"Promo code {promo.code} does not apply to {vehicle_class.value}"
        )
    if promo.min_amount and total_fare < promo.min_amount:
        raise ValidationError(
            f"Minimum fare of {promo.min_amount:g} required for {promo.code}"
        )


# ── Engine facade ─────────────────────────────────────────────────────


class PricingEngine:
    """High-level API used by the request lifecycle and the API layer."""

    def __init__(
        self,
        fare_config: Optional[dict[VehicleClass, FareConfig]] = None,
        platform_fee_rate: float = 0.05,
        tax_rate: float = 0.05,
        currency: str = "INR",
        tz: Optional[tzinfo] = None,
    ):
        self.fare_config = fare_config or DEFAULT_FARE_CONFIG
        self.platform_fee_rate = platform_fee_rate
        self.tax_rate = tax_rate
        self.currency = currency
        self.tz = tz

    def calculate_fare(
        self,
        vehicle_class: VehicleClass,
        distance_km: float,
        duration_min: float,
        surge_multiplier: float = 1.0,
    ) -> FareBreakdown:
        if distance_km < 0 or duration_min < 0:
            raise ValidationError("Distance and duration must be non-negative")
        config = self.fare_config[vehicle_class]
        surge_multiplier = max(1.0, surge_multiplier)

        distance_charge = distance_km * config.per_km
        time_charge = duration_min * config.per_minute
        subtotal = max(
            config.min_fare, config.base_fare + distance_charge + time_charge
        )

        surged = subtotal * surge_multiplier
        platform_fee = surged * self.platform_fee_rate
        tax = (surged + platform_fee) * self.tax_rate

        return FareBreakdown(
            vehicle_class=vehicle_class,
            base_fare=config.base_fare,
            distance_charge=distance_charge,
            time_charge=time_charge,
            surge_multiplier=surge_multiplier,
            surge_amount=surged - subtotal,
            platform_fee=platform_fee,
            tax=tax,
            total_fare=round_half_up(surged + platform_fee + tax),
            currency=self.currency,
        )

    def apply_promo(
        self,
        fare: FareBreakdown,
        promo: PromoCode,
        now: Optional[datetime] = None,
    ) -> FareBreakdown:
        validate_promo(promo, fare.total_fare, fare.vehicle_class, now)
        discount = discount_strategy_for(promo).discount_for(fare.total_fare)
        discount = min(discount, fare.total_fare)
        return replace(
            fare,
            discount=round_half_up(discount, 2),
            total_fare=round_half_up(max(fare.total_fare - discount, 0.0), 2),
            promo_code=promo.code,
        )

    def estimate(
        self,
        vehicle_class: VehicleClass,
        distance_km: float,
        duration_min: float,
        *,
        when: Optional[datetime] = None,
        surge_multiplier: Optional[float] = None,
        promo: Optional[PromoCode] = None,
    ) -> FareBreakdown:
        """Price a trip; the surge is derived from *when* unless given."""
        if surge_multiplier is None:
            when = when or datetime.now(timezone.utc)
            surge_multiplier = surge_multiplier_for(classify_demand(when, self.tz))
        fare = self.calculate_fare(
            vehicle_class, distance_km, duration_min, surge_multiplier
        )
        if promo is not None:
            fare = self.apply_promo(fare, promo, when)
        return fare
