"""
Proximity & Geofence Evaluator
==============================

Tiers (metres to target)
------------------------
arrived <= 50 < very_close <= 100 < close <= 500 < nearby <= 1000 < far

The evaluator keeps one ``GeofenceState`` per observer and only reports an
event when the classification changes, so repeated ticks at a stable
distance band never re-trigger notifications.  Evaluation is pure
arithmetic plus a dict lookup: O(1) per tick, no I/O.

Reaching ``arrived`` yields an event but never changes request status.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .distance import compass_label, format_distance, haversine_m, initial_bearing
from .entities import GeofenceState, Location, RideRequest
from .enums import HapticIntensity, ProximityLevel, RequestStatus

PROXIMITY_TIERS: tuple[tuple[float, ProximityLevel], ...] = (
    (50.0, ProximityLevel.ARRIVED),
    (100.0, ProximityLevel.VERY_CLOSE),
    (500.0, ProximityLevel.CLOSE),
    (1000.0, ProximityLevel.NEARBY),
)

HAPTICS: dict[ProximityLevel, HapticIntensity] = {
    ProximityLevel.ARRIVED: HapticIntensity.HEAVY,
    ProximityLevel.VERY_CLOSE: HapticIntensity.MEDIUM,
    ProximityLevel.CLOSE: HapticIntensity.LIGHT,
    ProximityLevel.NEARBY: HapticIntensity.LIGHT,
    ProximityLevel.FAR: HapticIntensity.NONE,
}

PICKUP_PHASE = frozenset(
    {RequestStatus.PENDING, RequestStatus.SEARCHING, RequestStatus.MATCHED}
)
DROP_PHASE = frozenset({RequestStatus.ACCEPTED})


@dataclass(frozen=True)
class ProximityEvent:
    observer_id: str
    level: ProximityLevel
    previous_level: Optional[ProximityLevel]
    distance_m: float
    bearing: float
    direction: str
    message: str
    intensity: HapticIntensity


def classify_proximity(distance_m: float) -> ProximityLevel:
    for limit, level in PROXIMITY_TIERS:
        if distance_m <= limit:
            return level
    return ProximityLevel.FAR


def proximity_message(level: ProximityLevel, distance_m: float) -> str:
    if level == ProximityLevel.ARRIVED:
        return "Driver has arrived"
    if level == ProximityLevel.VERY_CLOSE:
        return "Driver is 100m away"
    return f"Driver is {format_distance(distance_m)} away"


def is_within_geofence(point: Location, center: Location, radius_m: float) -> bool:
    return (
        haversine_m(point.latitude, point.longitude, center.latitude, center.longitude)
        <= radius_m
    )


def geofence_target(request: RideRequest) -> Optional[Location]:
    """Pickup while the driver is on the way, drop once the trip is accepted."""
    if request.status in PICKUP_PHASE:
        return request.pickup
    if request.status in DROP_PHASE:
        return request.drop
    return None


class ProximityEvaluator:
    """Debounces proximity classifications per observer."""

    def __init__(self) -> None:
        self._states: dict[str, GeofenceState] = {}

    def state_for(self, observer_id: str) -> Optional[GeofenceState]:
        return self._states.get(observer_id)

    def reset(self, observer_id: str) -> None:
        self._states.pop(observer_id, None)

    def evaluate(
        self, observer_id: str, position: Location, target: Location
    ) -> Optional[ProximityEvent]:
        """Classify *position* against *target*; return an event on change."""
        distance = haversine_m(
            position.latitude, position.longitude, target.latitude, target.longitude
        )
        level = classify_proximity(distance)
        previous = self._states.get(observer_id)
        self._states[observer_id] = GeofenceState(level=level, distance_m=distance)

        if previous is not None and previous.level == level:
            return None

        bearing = initial_bearing(
            position.latitude, position.longitude, target.latitude, target.longitude
        )
        return ProximityEvent(
            observer_id=observer_id,
            level=level,
            previous_level=previous.level if previous else None,
            distance_m=distance,
            bearing=bearing,
            direction=compass_label(bearing),
            message=proximity_message(level, distance),
            intensity=HAPTICS[level],
        )
