"""Domain enumerations and state-transition rules."""

import enum


class RequestStatus(str, enum.Enum):
    PENDING = "pending"
    SEARCHING = "searching"
    MATCHED = "matched"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# State machine: maps current status -> set of valid next statuses
REQUEST_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.PENDING: {
        RequestStatus.SEARCHING,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    },
    RequestStatus.SEARCHING: {
        RequestStatus.MATCHED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    },
    RequestStatus.MATCHED: {
        RequestStatus.ACCEPTED,
        RequestStatus.CANCELLED,
        RequestStatus.EXPIRED,
    },
    RequestStatus.ACCEPTED: {RequestStatus.COMPLETED, RequestStatus.CANCELLED},
    RequestStatus.COMPLETED: set(),
    RequestStatus.CANCELLED: set(),
    RequestStatus.EXPIRED: set(),
}

TERMINAL_STATUSES = frozenset(
    status for status, allowed in REQUEST_TRANSITIONS.items() if not allowed
)

# Statuses during which a driver is attached to the request
DRIVER_HOLDING_STATUSES = frozenset({RequestStatus.MATCHED, RequestStatus.ACCEPTED})


class VehicleClass(str, enum.Enum):
    BIKE = "bike"
    AUTO = "auto"
    CAR = "car"


class DemandLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    VERY_HIGH = "very_high"


class TrafficLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class ProximityLevel(str, enum.Enum):
    ARRIVED = "arrived"
    VERY_CLOSE = "very_close"
    CLOSE = "close"
    NEARBY = "nearby"
    FAR = "far"


class HapticIntensity(str, enum.Enum):
    NONE = "none"
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class ManeuverType(str, enum.Enum):
    TURN_LEFT = "turn-left"
    TURN_RIGHT = "turn-right"
    TURN_SLIGHT_LEFT = "turn-slight-left"
    TURN_SLIGHT_RIGHT = "turn-slight-right"
    TURN_SHARP_LEFT = "turn-sharp-left"
    TURN_SHARP_RIGHT = "turn-sharp-right"
    STRAIGHT = "straight"
    ROUNDABOUT = "roundabout"
    DEPART = "depart"
    DESTINATION = "destination"
