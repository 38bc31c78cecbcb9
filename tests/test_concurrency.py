"""
Concurrency safety tests.

Demonstrates:
1. A driver can be claimed by at most one request; the loser gets
   ``ConcurrencyConflict`` and stays searching.
2. Cancellation racing a match: whichever commits first wins, the other
   conditional update touches nothing.
3. Distributed lock prevents simultaneous acquire.
4. The matching worker skips requests locked by another process.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from ridedispatch.domain.enums import RequestStatus
from ridedispatch.domain.errors import ConcurrencyConflict
from ridedispatch.infrastructure.locks import DistributedLock, LockNotAcquired
from ridedispatch.infrastructure.repositories import (
    DriverRepository,
    RideRequestRepository,
)
from ridedispatch.services.lifecycle import RequestLifecycleManager
from ridedispatch.services.matching import MatchingEngine
from ridedispatch.workers.matcher import match_request, run_matching_cycle


class TestDriverClaimRace:
    @pytest.mark.asyncio
    async def test_driver_assigned_to_one_request_only(
        self, db_session, make_driver, make_request
    ):
        driver_id = await make_driver()
        first = await make_request(passenger_id=1)
        second = await make_request(passenger_id=2)
        engine = MatchingEngine(db_session)
        requests = RideRequestRepository(db_session)

        # Both attempts see the same free driver...
        for request_id in (first, second):
            candidates = await engine.discover(await requests.get(request_id))
            assert [c.driver_id for c in candidates] == [driver_id]

        # ...but only the first commit gets it.
        await engine.commit_assignment(first, driver_id)
        with pytest.raises(ConcurrencyConflict):
            await engine.commit_assignment(second, driver_id)

        assert (await requests.get(first)).matched_driver_id == driver_id
        loser = await requests.get(second)
        assert loser.status == RequestStatus.SEARCHING
        assert loser.matched_driver_id is None

    @pytest.mark.asyncio
    async def test_loser_rediscovers_instead_of_reclaiming(
        self, db_session, make_driver, make_request
    ):
        driver_id = await make_driver()
        first = await make_request(passenger_id=1)
        second = await make_request(passenger_id=2)
        engine = MatchingEngine(db_session)
        await engine.commit_assignment(first, driver_id)

        assert await engine.auto_match(second) is False
        request = await RideRequestRepository(db_session).get(second)
        assert request.status == RequestStatus.SEARCHING
        assert request.search_radius_m == 7_000


class TestCancelMatchRace:
    @pytest.mark.asyncio
    async def test_cancel_wins_and_driver_stays_free(
        self, db_session, make_driver, make_request
    ):
        driver_id = await make_driver()
        request_id = await make_request()
        engine = MatchingEngine(db_session)
        candidates = await engine.discover(
            await RideRequestRepository(db_session).get(request_id)
        )

        await RequestLifecycleManager(db_session).cancel(request_id, "Changed plans")

        with pytest.raises(ConcurrencyConflict):
            await engine.commit_assignment(request_id, candidates[0].driver_id)

        request = await RideRequestRepository(db_session).get(request_id)
        assert request.status == RequestStatus.CANCELLED
        assert request.matched_driver_id is None
        driver = await DriverRepository(db_session).get(driver_id)
        assert driver.is_available is True

    @pytest.mark.asyncio
    async def test_match_wins_and_cancel_releases_driver(
        self, db_session, make_driver, make_request
    ):
        driver_id = await make_driver()
        request_id = await make_request()
        await MatchingEngine(db_session).auto_match(request_id)

        request = await RequestLifecycleManager(db_session).cancel(request_id, "Late")

        assert request.status == RequestStatus.CANCELLED
        assert request.matched_driver_id == driver_id
        driver = await DriverRepository(db_session).get(driver_id)
        assert driver.is_available is True

    @pytest.mark.asyncio
    async def test_stale_status_swap_is_rejected(self, db_session, make_request):
        request_id = await make_request()
        repo = RideRequestRepository(db_session)

        assert await repo.compare_and_set_status(
            request_id, RequestStatus.SEARCHING, RequestStatus.EXPIRED
        )
        assert not await repo.compare_and_set_status(
            request_id, RequestStatus.SEARCHING, RequestStatus.MATCHED
        )


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_only_own_token(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        assert await lock.release() is True

        args = mock_redis.eval.await_args.args
        assert args[1:] == (1, "lock:test-key", lock.token)

    @pytest.mark.asyncio
    async def test_request_lock_key(self):
        lock = DistributedLock.for_request(AsyncMock(), 42)
        assert lock.key == "lock:match:42"

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(LockNotAcquired, match="Could not acquire lock"):
            async with lock:
                pass


class TestMatchingWorker:
    @pytest.mark.asyncio
    async def test_locked_request_is_skipped(self, session_factory, make_request):
        request_id = await make_request()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=None)

        assert await match_request(request_id, session_factory, redis) is False
        redis.eval.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cycle_matches_and_releases_lock(
        self, session_factory, make_driver, make_request
    ):
        await make_driver()
        request_id = await make_request()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)
        redis.eval = AsyncMock(return_value=1)

        assert await run_matching_cycle(session_factory, redis) == 1
        redis.eval.assert_awaited_once()

        async with session_factory() as session:
            request = await RideRequestRepository(session).get(request_id)
        assert request.status == RequestStatus.MATCHED

    @pytest.mark.asyncio
    async def test_lock_released_when_matching_fails(self, session_factory, make_request):
        request_id = await make_request()
        redis = AsyncMock()
        redis.set = AsyncMock(return_value=True)
        redis.eval = AsyncMock(return_value=1)

        with patch.object(
            MatchingEngine,
            "match_with_retries",
            AsyncMock(side_effect=RuntimeError("db down")),
        ):
            with pytest.raises(RuntimeError):
                await match_request(request_id, session_factory, redis)

        args = redis.eval.await_args.args
        assert args[2] == f"lock:match:{request_id}"
