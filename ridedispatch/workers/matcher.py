"""
Background Matching Worker
==========================

Runs every ``MATCHING_INTERVAL_SECONDS`` (default 10 s).

Per cycle
---------
1. Fetch the ids of all ``searching`` requests.
2. For each one, take ``lock:match:<id>`` in Redis; skip if another worker
   holds it.
3. Run ``MatchingEngine.match_with_retries`` in its own session: bounded
   attempts, stepped radius growth on empty discovery, immediate
   re-discovery after a lost race.

Requests are processed concurrently, capped by a semaphore.  Requests that
never find a driver are left for the expiry sweeper.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import async_sessionmaker

from ridedispatch.config import settings
from ridedispatch.infrastructure.database import async_session_factory
from ridedispatch.infrastructure.locks import DistributedLock, LockNotAcquired
from ridedispatch.infrastructure.redis_client import get_redis
from ridedispatch.infrastructure.repositories import RideRequestRepository
from ridedispatch.services.matching import MatchingEngine
from ridedispatch.workers.loop import PeriodicTask

logger = logging.getLogger(__name__)

MAX_CONCURRENT_MATCHES = 20


async def match_request(
    request_id: int,
    session_factory: async_sessionmaker,
    redis: aioredis.Redis,
) -> bool:
    try:
        async with DistributedLock.for_request(redis, request_id, ttl_seconds=60):
            async with session_factory() as session:
                return await MatchingEngine(session).match_with_retries(request_id)
    except LockNotAcquired:
        logger.debug("Request %s is being matched elsewhere; skipping", request_id)
        return False


async def run_matching_cycle(
    session_factory: async_sessionmaker = async_session_factory,
    redis: Optional[aioredis.Redis] = None,
) -> int:
    """Execute one matching cycle.  Returns the number of requests matched."""
    redis = redis or await get_redis()
    async with session_factory() as session:
        request_ids = await RideRequestRepository(session).get_searching_ids()
    if not request_ids:
        return 0

    semaphore = asyncio.Semaphore(MAX_CONCURRENT_MATCHES)

    async def _bounded(request_id: int) -> bool:
        async with semaphore:
            return await match_request(request_id, session_factory, redis)

    results = await asyncio.gather(
        *(_bounded(rid) for rid in request_ids), return_exceptions=True
    )
    matched = 0
    for request_id, result in zip(request_ids, results):
        if isinstance(result, Exception):
            logger.error("Matching request %s failed", request_id, exc_info=result)
        elif result:
            matched += 1
    if matched:
        logger.info("Matching cycle: %d of %d request(s) matched", matched, len(request_ids))
    return matched


_worker = PeriodicTask(
    "Matching worker", settings.matching_interval_seconds, run_matching_cycle
)


async def start_matching_loop() -> None:
    await _worker.start()


async def stop_matching_loop() -> None:
    await _worker.stop()
