"""
Navigation / ETA Engine.

Wraps the routing provider.  ``get_instructions`` never raises on provider
trouble: a missing API key or a ``ProviderUnavailable`` both degrade to the
synthetic straight-line route.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from ridedispatch.config import Settings
from ridedispatch.domain import navigation as rules
from ridedispatch.domain.entities import (
    Location,
    NavigationInstruction,
    NavigationRoute,
)
from ridedispatch.domain.errors import ProviderUnavailable
from ridedispatch.infrastructure.routing_client import (
    OpenRouteServiceClient,
    RoutingProvider,
)

logger = logging.getLogger(__name__)


class NavigationService:
    def __init__(
        self,
        provider: Optional[RoutingProvider] = None,
        fallback_speed_kmh: float = 30.0,
    ):
        self.provider = provider
        self.fallback_speed_kmh = fallback_speed_kmh

    @classmethod
    def from_settings(cls, config: Settings) -> "NavigationService":
        provider = None
        if config.routing_api_key:
            provider = OpenRouteServiceClient(
                config.routing_api_key,
                base_url=config.routing_base_url,
                timeout=config.routing_timeout_seconds,
            )
        return cls(provider, config.fallback_speed_kmh)

    async def get_instructions(self, start: Location, end: Location) -> NavigationRoute:
        if self.provider is None:
            return rules.synthetic_route(start, end, self.fallback_speed_kmh)
        try:
            return await self.provider.directions(start, end)
        except ProviderUnavailable as exc:
            logger.warning("Routing provider unavailable, using straight line: %s", exc)
            return rules.synthetic_route(start, end, self.fallback_speed_kmh)

    def get_current_instruction(
        self,
        instructions: Sequence[NavigationInstruction],
        current: Location,
        threshold_m: float = rules.DEFAULT_INSTRUCTION_THRESHOLD_M,
    ) -> Optional[NavigationInstruction]:
        return rules.current_instruction(instructions, current, threshold_m)

    def is_off_route(
        self,
        current: Location,
        geometry: Sequence[Location],
        threshold_m: float = rules.DEFAULT_OFF_ROUTE_THRESHOLD_M,
    ) -> bool:
        return rules.is_off_route(current, geometry, threshold_m)

    async def get_reroute(
        self,
        current: Location,
        destination: Location,
        original: NavigationRoute,
        threshold_m: float = rules.DEFAULT_OFF_ROUTE_THRESHOLD_M,
    ) -> Optional[NavigationRoute]:
        """``None`` while on route; otherwise a brand-new route from *current*."""
        if not self.is_off_route(current, original.geometry, threshold_m):
            return None
        logger.info("Off route at (%.5f, %.5f); rerouting", current.latitude, current.longitude)
        return await self.get_instructions(current, destination)

    async def eta_minutes(self, current: Location, destination: Location) -> int:
        route = await self.get_instructions(current, destination)
        return math.ceil(route.total_duration_s / 60)

    async def aclose(self) -> None:
        if isinstance(self.provider, OpenRouteServiceClient):
            await self.provider.aclose()
