"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``RideRequest``: enforces valid lifecycle transitions
  (PENDING -> SEARCHING -> MATCHED -> ACCEPTED -> COMPLETED, with early
  exits to CANCELLED / EXPIRED).
- Repositories convert ORM rows into these dataclasses so nothing untyped
  leaves the persistence boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    REQUEST_TRANSITIONS,
    TERMINAL_STATUSES,
    DiscountType,
    ManeuverType,
    ProximityLevel,
    RequestStatus,
    VehicleClass,
)
from .errors import InvalidStateTransition, ValidationError


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def validate(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValidationError(f"Longitude out of range: {self.longitude}")


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class RideRequest:
    id: Optional[int] = None
    passenger_id: int = 0
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    drop: Location = field(default_factory=lambda: Location(0, 0))
    pickup_label: str = ""
    drop_label: str = ""
    vehicle_class: VehicleClass = VehicleClass.CAR
    fare: float = 0.0
    distance_km: float = 0.0
    duration_min: float = 0.0
    status: RequestStatus = RequestStatus.SEARCHING
    matched_driver_id: Optional[int] = None
    search_radius_m: int = 5_000
    timeout_at: Optional[datetime] = None
    promo_code: Optional[str] = None
    discount_amount: float = 0.0
    surge_multiplier: float = 1.0
    scheduled_time: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    organization_only: bool = False
    organization: Optional[str] = None
    matched_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, new_status: RequestStatus) -> bool:
        return new_status in REQUEST_TRANSITIONS.get(self.status, set())

    def transition_to(self, new_status: RequestStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        if not self.can_transition_to(new_status):
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status


@dataclass(frozen=True)
class DriverCandidate:
    """Transient projection produced per discovery query; never persisted."""

    driver_id: int
    distance_m: float
    rating: float
    vehicle_info: str
    location: Location
    vehicle_class: Optional[VehicleClass] = None
    organization: Optional[str] = None


@dataclass(frozen=True)
class LiveLocation:
    """One driver position sample.  The newest timestamp is authoritative."""

    driver_id: int
    location: Location
    timestamp: datetime
    trip_id: Optional[int] = None
    heading: Optional[float] = None
    speed: Optional[float] = None

    def is_newer_than(self, other: Optional[LiveLocation]) -> bool:
        return other is None or self.timestamp > other.timestamp


@dataclass
class GeofenceState:
    """Last classification seen by one observer; only used for debouncing."""

    level: ProximityLevel
    distance_m: float


@dataclass(frozen=True)
class NavigationInstruction:
    type: ManeuverType
    text: str
    distance_m: float
    duration_s: float
    location: Location


@dataclass(frozen=True)
class NavigationRoute:
    instructions: tuple[NavigationInstruction, ...]
    geometry: tuple[Location, ...]
    total_distance_m: float
    total_duration_s: float
    synthetic: bool = False


@dataclass
class PromoCode:
    code: str
    discount_type: DiscountType
    discount_value: float
    id: Optional[int] = None
    max_discount: Optional[float] = None
    min_amount: float = 0.0
    max_uses: Optional[int] = None
    current_uses: int = 0
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True
    applicable_vehicle_classes: tuple[VehicleClass, ...] = ()
