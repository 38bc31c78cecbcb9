"""
Matching Engine
===============

``auto_match`` is one attempt:

1. Load the request; anything but ``searching`` is a no-op (``False``).
2. Discover available drivers around the pickup at the current radius.
3. Nobody in range -> grow the radius one step (capped), return ``False``.
4. Otherwise claim the nearest driver and flip the request to ``matched``
   inside one transaction.  Either conditional update touching zero rows
   rolls the whole thing back and raises ``ConcurrencyConflict``.

``match_with_retries`` is the bounded retry driver used by the worker:
no-candidates backs off before the next attempt, a lost race re-runs
discovery immediately (never re-claims the same driver blindly).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.config import settings
from ridedispatch.domain.entities import DriverCandidate, RideRequest
from ridedispatch.domain.enums import RequestStatus
from ridedispatch.domain.errors import ConcurrencyConflict
from ridedispatch.domain.matching import next_search_radius
from ridedispatch.infrastructure.repositories import (
    DriverRepository,
    RideRequestRepository,
)

logger = logging.getLogger(__name__)


class MatchingEngine:
    def __init__(
        self,
        session: AsyncSession,
        *,
        radius_step_m: int = settings.radius_step_m,
        max_radius_m: int = settings.max_search_radius_m,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session = session
        self.requests = RideRequestRepository(session)
        self.drivers = DriverRepository(session, settings.h3_resolution)
        self.radius_step_m = radius_step_m
        self.max_radius_m = max_radius_m
        self.clock = clock

    async def discover(self, request: RideRequest) -> list[DriverCandidate]:
        return await self.drivers.find_nearby(
            request.pickup,
            request.search_radius_m,
            vehicle_class=request.vehicle_class,
            organization=request.organization if request.organization_only else None,
        )

    async def auto_match(self, request_id: int) -> bool:
        request = await self.requests.get(request_id)
        if request.status != RequestStatus.SEARCHING:
            return False

        candidates = await self.discover(request)
        if not candidates:
            new_radius = next_search_radius(
                request.search_radius_m, self.radius_step_m, self.max_radius_m
            )
            if new_radius > request.search_radius_m:
                await self.requests.expand_radius(request_id, new_radius)
                await self.session.commit()
                logger.info(
                    "No drivers for request %s; radius %dm -> %dm",
                    request_id,
                    request.search_radius_m,
                    new_radius,
                )
            return False

        nearest = candidates[0]
        await self.commit_assignment(request_id, nearest.driver_id)
        logger.info(
            "Request %s matched with driver %s (%.0fm away)",
            request_id,
            nearest.driver_id,
            nearest.distance_m,
        )
        return True

    async def commit_assignment(self, request_id: int, driver_id: int) -> RideRequest:
        """Claim *driver_id* and move the request to ``matched`` atomically."""
        if not await self.drivers.claim(driver_id):
            await self.session.rollback()
            raise ConcurrencyConflict(f"Driver {driver_id} is no longer available")

        assigned = await self.requests.compare_and_set_status(
            request_id,
            RequestStatus.SEARCHING,
            RequestStatus.MATCHED,
            matched_driver_id=driver_id,
            matched_at=self.clock(),
        )
        if not assigned:
            await self.session.rollback()
            raise ConcurrencyConflict(f"Request {request_id} is no longer searching")

        await self.session.commit()
        return await self.requests.get(request_id)

    async def match_with_retries(
        self,
        request_id: int,
        *,
        max_attempts: int = settings.match_max_attempts,
        backoff_seconds: float = settings.match_backoff_seconds,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        for attempt in range(1, max_attempts + 1):
            try:
                if await self.auto_match(request_id):
                    return True
            except ConcurrencyConflict as exc:
                logger.info("Match attempt %d for %s lost a race: %s", attempt, request_id, exc)
                continue

            request = await self.requests.get(request_id)
            if request.status != RequestStatus.SEARCHING:
                return False
            if attempt < max_attempts:
                await sleep(backoff_seconds * attempt)
        return False
