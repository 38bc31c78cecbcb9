"""
Redis-based distributed lock.

The matching worker takes ``lock:match:<request_id>`` before running an
auto-match attempt, so two worker processes do not waste a discovery round
racing for the same request.  The driver claim and the status change are
conditional updates whether or not the lock is held.

SET NX EX to acquire; Lua compare-and-delete to release only our own token.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockNotAcquired(RuntimeError):
    pass


class DistributedLock:
    def __init__(
        self, client: aioredis.Redis, key: str, ttl_seconds: int = 30
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    @classmethod
    def for_request(
        cls, client: aioredis.Redis, request_id: int, ttl_seconds: int = 30
    ) -> "DistributedLock":
        return cls(client, f"match:{request_id}", ttl_seconds)

    async def acquire(self) -> bool:
        """Try once; ``True`` if this instance now owns the key."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def release(self) -> bool:
        """Delete the key only while it still holds our token."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self):
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()
