"""
OpenRouteService adapter.

Sole responsibility: talk to the provider over HTTP and turn its GeoJSON
directions payload into a typed ``NavigationRoute``.  Any transport, HTTP
status or payload-shape problem is reported as ``ProviderUnavailable``;
deciding what to do about it is the navigation service's job.

Coordinates go out as ``[lng, lat]`` and come back the same way.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, Field
from pydantic import ValidationError as PayloadError

from ridedispatch.domain.entities import (
    Location,
    NavigationInstruction,
    NavigationRoute,
)
from ridedispatch.domain.errors import ProviderUnavailable
from ridedispatch.domain.navigation import map_maneuver

logger = logging.getLogger(__name__)


class RoutingProvider(Protocol):
    async def directions(self, start: Location, end: Location) -> NavigationRoute: ...


# ── Provider payload (validated at the boundary) ──────────────────────


class _OrsStep(BaseModel):
    distance: float = 0.0
    duration: float = 0.0
    type: int
    instruction: str = ""
    way_points: list[int] = Field(min_length=1)


class _OrsSegment(BaseModel):
    steps: list[_OrsStep] = []


class _OrsSummary(BaseModel):
    distance: float = 0.0
    duration: float = 0.0


class _OrsProperties(BaseModel):
    summary: _OrsSummary
    segments: list[_OrsSegment] = Field(min_length=1)


class _OrsGeometry(BaseModel):
    coordinates: list[list[float]] = Field(min_length=2)


class _OrsFeature(BaseModel):
    geometry: _OrsGeometry
    properties: _OrsProperties


class _OrsDirections(BaseModel):
    features: list[_OrsFeature] = Field(min_length=1)


def _to_route(payload: _OrsDirections) -> NavigationRoute:
    feature = payload.features[0]
    geometry = tuple(Location(c[1], c[0]) for c in feature.geometry.coordinates)

    instructions = []
    for segment in feature.properties.segments:
        for step in segment.steps:
            index = min(step.way_points[0], len(geometry) - 1)
            instructions.append(
                NavigationInstruction(
                    type=map_maneuver(step.type),
                    text=step.instruction,
                    distance_m=step.distance,
                    duration_s=step.duration,
                    location=geometry[index],
                )
            )

    return NavigationRoute(
        instructions=tuple(instructions),
        geometry=geometry,
        total_distance_m=feature.properties.summary.distance,
        total_duration_s=feature.properties.summary.duration,
    )


class OpenRouteServiceClient:
    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openrouteservice.org",
        timeout: float = 5.0,
        profile: str = "driving-car",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.profile = profile
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            headers={"Authorization": api_key},
            transport=transport,
        )

    async def directions(self, start: Location, end: Location) -> NavigationRoute:
        body = {
            "coordinates": [
                [start.longitude, start.latitude],
                [end.longitude, end.latitude],
            ],
            "instructions": True,
            "language": "en",
        }
        try:
            response = await self._client.post(
                f"/v2/directions/{self.profile}/geojson", json=body
            )
            response.raise_for_status()
            payload = _OrsDirections.model_validate(response.json())
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(f"Routing request failed: {exc}") from exc
        except (PayloadError, ValueError) as exc:
            raise ProviderUnavailable(f"Malformed routing payload: {exc}") from exc
        return _to_route(payload)

    async def aclose(self) -> None:
        await self._client.aclose()
