"""Tests for routing, instruction lookup and off-route detection."""

import json

import httpx
import pytest

from ridedispatch.domain.distance import haversine_m
from ridedispatch.domain.entities import Location, NavigationInstruction
from ridedispatch.domain.enums import ManeuverType
from ridedispatch.domain.errors import ProviderUnavailable
from ridedispatch.domain.navigation import (
    current_instruction,
    format_duration,
    is_off_route,
    map_maneuver,
    next_instruction,
    synthetic_route,
    voice_instruction,
)
from ridedispatch.infrastructure.routing_client import OpenRouteServiceClient
from ridedispatch.services.navigation import NavigationService

START = Location(19.0896, 72.8656)
END = Location(19.1176, 72.8490)

ORS_PAYLOAD = {
    "features": [
        {
            "geometry": {
                "coordinates": [
                    [72.8656, 19.0896],
                    [72.8660, 19.0950],
                    [72.8600, 19.1050],
                    [72.8490, 19.1176],
                ]
            },
            "properties": {
                "summary": {"distance": 4200.0, "duration": 600.0},
                "segments": [
                    {
                        "steps": [
                            {"distance": 600, "duration": 90, "type": 11,
                             "instruction": "Head north", "way_points": [0, 1]},
                            {"distance": 1200, "duration": 180, "type": 0,
                             "instruction": "Turn left onto Sahar Road", "way_points": [1, 2]},
                            {"distance": 2400, "duration": 330, "type": 12,
                             "instruction": "Keep left", "way_points": [2, 3]},
                            {"distance": 0, "duration": 0, "type": 10,
                             "instruction": "Arrive at destination", "way_points": [3, 3]},
                        ]
                    }
                ],
            },
        }
    ]
}


def ors_client(handler) -> OpenRouteServiceClient:
    return OpenRouteServiceClient("test-key", transport=httpx.MockTransport(handler))


def instruction(location: Location, kind=ManeuverType.STRAIGHT, distance=100.0):
    return NavigationInstruction(
        type=kind, text=kind.value, distance_m=distance, duration_s=10.0, location=location
    )


class TestSyntheticRoute:
    def test_depart_and_arrive(self):
        route = synthetic_route(START, END, speed_kmh=30)

        assert route.synthetic is True
        assert [i.type for i in route.instructions] == [
            ManeuverType.DEPART,
            ManeuverType.DESTINATION,
        ]
        assert route.geometry == (START, END)

    def test_duration_from_fixed_speed(self):
        route = synthetic_route(START, END, speed_kmh=30)
        distance = haversine_m(START.latitude, START.longitude, END.latitude, END.longitude)

        assert route.total_distance_m == pytest.approx(distance)
        assert route.total_duration_s == pytest.approx(distance / 1000 / 30 * 3600)


class TestOpenRouteServiceClient:
    @pytest.mark.asyncio
    async def test_parses_directions(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json=ORS_PAYLOAD)

        client = ors_client(handler)
        route = await client.directions(START, END)
        await client.aclose()

        assert seen["path"] == "/v2/directions/driving-car/geojson"
        assert seen["auth"] == "test-key"
        assert seen["body"]["coordinates"] == [[72.8656, 19.0896], [72.8490, 19.1176]]
        assert route.synthetic is False
        assert route.total_distance_m == 4200.0
        assert [i.type for i in route.instructions] == [
            ManeuverType.DEPART,
            ManeuverType.TURN_LEFT,
            ManeuverType.STRAIGHT,  # unknown code 12
            ManeuverType.DESTINATION,
        ]
        assert route.instructions[1].location == Location(19.0950, 72.8660)
        assert len(route.geometry) == 4

    @pytest.mark.asyncio
    async def test_http_error_is_provider_unavailable(self):
        client = ors_client(lambda request: httpx.Response(503))
        with pytest.raises(ProviderUnavailable):
            await client.directions(START, END)

    @pytest.mark.asyncio
    async def test_malformed_payload_is_provider_unavailable(self):
        client = ors_client(lambda request: httpx.Response(200, json={"features": []}))
        with pytest.raises(ProviderUnavailable):
            await client.directions(START, END)


class TestNavigationService:
    @pytest.mark.asyncio
    async def test_no_provider_uses_straight_line(self):
        route = await NavigationService().get_instructions(START, END)
        assert route.synthetic is True

    @pytest.mark.asyncio
    async def test_provider_failure_falls_back(self):
        service = NavigationService(ors_client(lambda request: httpx.Response(500)))
        route = await service.get_instructions(START, END)
        await service.aclose()

        assert route.synthetic is True
        assert route.instructions[-1].type == ManeuverType.DESTINATION

    @pytest.mark.asyncio
    async def test_provider_route_is_used(self):
        service = NavigationService(
            ors_client(lambda request: httpx.Response(200, json=ORS_PAYLOAD))
        )
        route = await service.get_instructions(START, END)
        await service.aclose()
        assert route.synthetic is False

    @pytest.mark.asyncio
    async def test_reroute_only_when_off_route(self):
        service = NavigationService()
        original = synthetic_route(START, END)

        assert await service.get_reroute(START, END, original) is None

        detour = Location(START.latitude, START.longitude + 0.01)  # ~1 km east
        new_route = await service.get_reroute(detour, END, original)
        assert new_route is not None
        assert new_route.geometry[0] == detour

    @pytest.mark.asyncio
    async def test_eta_minutes_rounds_up(self):
        route = synthetic_route(START, END, 30)
        eta = await NavigationService().eta_minutes(START, END)
        assert eta * 60 >= route.total_duration_s
        assert (eta - 1) * 60 < route.total_duration_s


class TestInstructions:
    def test_maneuver_mapping(self):
        assert map_maneuver(0) == ManeuverType.TURN_LEFT
        assert map_maneuver(7) == ManeuverType.ROUNDABOUT
        assert map_maneuver(99) == ManeuverType.STRAIGHT

    def test_current_instruction_within_threshold(self):
        far = instruction(START)
        near = instruction(END, ManeuverType.TURN_RIGHT)
        position = Location(END.latitude + 0.0003, END.longitude)  # ~33 m

        assert current_instruction([far, near], position) == near

    def test_current_instruction_defaults_to_first(self):
        steps = [instruction(START), instruction(END)]
        position = Location(19.0, 72.0)
        assert current_instruction(steps, position) == steps[0]

    def test_current_instruction_empty(self):
        assert current_instruction([], START) is None

    def test_next_instruction(self):
        steps = [instruction(START), instruction(END)]
        assert next_instruction(steps, steps[0]) == steps[1]
        assert next_instruction(steps, steps[1]) is None

    def test_voice_instruction(self):
        step = instruction(START, ManeuverType.TURN_LEFT, distance=200)
        assert voice_instruction(step) == "In 200m, turn left"

    def test_format_duration(self):
        assert format_duration(540) == "9 min"
        assert format_duration(4500) == "1h 15m"


class TestOffRoute:
    def test_on_vertex_is_on_route(self):
        assert not is_off_route(START, [START, END])

    def test_150m_away_is_off_route(self):
        position = Location(START.latitude + 150 / 111_195.0, START.longitude - 0.01)
        assert is_off_route(position, [START, END])

    def test_custom_threshold(self):
        position = Location(START.latitude + 150 / 111_195.0, START.longitude)
        assert is_off_route(position, [START, END], threshold_m=100)
        assert not is_off_route(position, [START, END], threshold_m=200)

    def test_empty_geometry_counts_as_off_route(self):
        assert is_off_route(START, [])
