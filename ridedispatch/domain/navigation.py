"""
Navigation / ETA rules that do not need the routing provider.

* Maneuver codes from OpenRouteService are mapped onto ``ManeuverType``.
* ``synthetic_route`` is the straight-line depart/arrive fallback used when
  the provider is missing or failing (fixed average speed).
* Off-route detection measures distance to route *vertices*, not segments.
  Dense provider geometries make the approximation good enough.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

from .distance import format_distance, haversine_m
from .entities import Location, NavigationInstruction, NavigationRoute
from .enums import ManeuverType

DEFAULT_INSTRUCTION_THRESHOLD_M = 50.0
DEFAULT_OFF_ROUTE_THRESHOLD_M = 100.0

ORS_MANEUVERS: dict[int, ManeuverType] = {
    0: ManeuverType.TURN_LEFT,
    1: ManeuverType.TURN_RIGHT,
    2: ManeuverType.TURN_SHARP_LEFT,
    3: ManeuverType.TURN_SHARP_RIGHT,
    4: ManeuverType.TURN_SLIGHT_LEFT,
    5: ManeuverType.TURN_SLIGHT_RIGHT,
    6: ManeuverType.STRAIGHT,
    7: ManeuverType.ROUNDABOUT,
    10: ManeuverType.DESTINATION,
    11: ManeuverType.DEPART,
}


def map_maneuver(code: int) -> ManeuverType:
    return ORS_MANEUVERS.get(code, ManeuverType.STRAIGHT)


def _distance(a: Location, b: Location) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def synthetic_route(
    start: Location, end: Location, speed_kmh: float = 30.0
) -> NavigationRoute:
    """Two-step depart/arrive route along the straight line."""
    distance_m = _distance(start, end)
    duration_s = distance_m / 1000.0 / speed_kmh * 3600.0
    instructions = (
        NavigationInstruction(
            type=ManeuverType.DEPART,
            text="Head towards destination",
            distance_m=distance_m,
            duration_s=duration_s,
            location=start,
        ),
        NavigationInstruction(
            type=ManeuverType.DESTINATION,
            text="You have arrived at your destination",
            distance_m=0.0,
            duration_s=0.0,
            location=end,
        ),
    )
    return NavigationRoute(
        instructions=instructions,
        geometry=(start, end),
        total_distance_m=distance_m,
        total_duration_s=duration_s,
        synthetic=True,
    )


def current_instruction(
    instructions: Sequence[NavigationInstruction],
    current: Location,
    threshold_m: float = DEFAULT_INSTRUCTION_THRESHOLD_M,
) -> Optional[NavigationInstruction]:
    """First instruction whose location is within *threshold_m*, else the first."""
    for instruction in instructions:
        if _distance(current, instruction.location) <= threshold_m:
            return instruction
    return instructions[0] if instructions else None


def next_instruction(
    instructions: Sequence[NavigationInstruction],
    current: NavigationInstruction,
) -> Optional[NavigationInstruction]:
    for index, instruction in enumerate(instructions[:-1]):
        if instruction.location == current.location:
            return instructions[index + 1]
    return None


def distance_to_route(current: Location, geometry: Sequence[Location]) -> float:
    return min((_distance(current, vertex) for vertex in geometry), default=math.inf)


def is_off_route(
    current: Location,
    geometry: Sequence[Location],
    threshold_m: float = DEFAULT_OFF_ROUTE_THRESHOLD_M,
) -> bool:
    return distance_to_route(current, geometry) > threshold_m


def format_duration(seconds: float) -> str:
    minutes = int(seconds // 60)
    if minutes < 60:
        return f"{minutes} min"
    return f"{minutes // 60}h {minutes % 60}m"


_SPOKEN = {
    ManeuverType.TURN_LEFT: "In {d}, turn left",
    ManeuverType.TURN_RIGHT: "In {d}, turn right",
    ManeuverType.TURN_SLIGHT_LEFT: "In {d}, keep left",
    ManeuverType.TURN_SLIGHT_RIGHT: "In {d}, keep right",
    ManeuverType.TURN_SHARP_LEFT: "In {d}, make a sharp left turn",
    ManeuverType.TURN_SHARP_RIGHT: "In {d}, make a sharp right turn",
    ManeuverType.STRAIGHT: "Continue straight for {d}",
    ManeuverType.ROUNDABOUT: "In {d}, enter the roundabout",
    ManeuverType.DESTINATION: "You have arrived at your destination",
    ManeuverType.DEPART: "Start your journey",
}


def voice_instruction(instruction: NavigationInstruction) -> str:
    template = _SPOKEN.get(instruction.type)
    if template is None:
        return instruction.text
    return template.format(d=format_distance(instruction.distance_m))
