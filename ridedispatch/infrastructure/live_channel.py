"""
Live Location Channel
=====================

A ``LiveLocationSession`` owns every subscription made through it, so
nothing leaks across app instances or tests: ``subscribe`` hands back a
disposer, ``close`` drops everything.

Topics
------
* ``trip:<request_id>`` -- riders / trip tracker for one request
* ``driver:<driver_id>`` -- anything following one driver

Delivery
--------
``publish`` dispatches locally first, then fans out over Redis pub/sub
(``live:driver:<id>``) to other processes, whose ``listen`` task feeds the
payload back through ``receive_raw``.  Redis delivery is at-least-once and
unordered, so each topic keeps the newest sample it has seen and drops
anything not strictly newer; that also swallows our own echo.

Payloads are validated with pydantic before they become ``LiveLocation``s;
malformed ones are logged and dropped.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Union

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from pydantic import ValidationError as PayloadError
from redis.exceptions import RedisError

from ridedispatch.domain.entities import LiveLocation, Location

logger = logging.getLogger(__name__)

LocationCallback = Callable[[LiveLocation], None]
Disposer = Callable[[], None]


def trip_topic(request_id: int) -> str:
    return f"trip:{request_id}"


def driver_topic(driver_id: int) -> str:
    return f"driver:{driver_id}"


class LocationMessage(BaseModel):
    """Wire shape of a location push on the real-time channel."""

    driver_id: int
    trip_id: Optional[int] = None
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)
    timestamp: datetime

    @classmethod
    def from_entity(cls, sample: LiveLocation) -> "LocationMessage":
        return cls(
            driver_id=sample.driver_id,
            trip_id=sample.trip_id,
            lat=sample.location.latitude,
            lng=sample.location.longitude,
            heading=sample.heading,
            speed=sample.speed,
            timestamp=sample.timestamp,
        )

    def to_entity(self) -> LiveLocation:
        ts = self.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return LiveLocation(
            driver_id=self.driver_id,
            trip_id=self.trip_id,
            location=Location(self.lat, self.lng),
            heading=self.heading,
            speed=self.speed,
            timestamp=ts,
        )


class LiveLocationSession:
    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        prefix: str = "live",
        retry_seconds: float = 1.0,
        max_retry_seconds: float = 30.0,
    ):
        self.redis = client
        self.prefix = prefix
        self.retry_seconds = retry_seconds
        self.max_retry_seconds = max_retry_seconds
        self._subscriptions: dict[str, dict[int, LocationCallback]] = {}
        self._latest: dict[str, LiveLocation] = {}
        self._tokens = itertools.count(1)

    # ── Registry ──────────────────────────────────────────────────────

    def subscribe(self, topic: str, callback: LocationCallback) -> Disposer:
        token = next(self._tokens)
        self._subscriptions.setdefault(topic, {})[token] = callback

        def dispose() -> None:
            self.unsubscribe(topic, token)

        return dispose

    def unsubscribe(self, topic: str, token: int) -> None:
        callbacks = self._subscriptions.get(topic)
        if not callbacks:
            return
        callbacks.pop(token, None)
        if not callbacks:
            del self._subscriptions[topic]
            self._latest.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, {}))

    def latest(self, topic: str) -> Optional[LiveLocation]:
        return self._latest.get(topic)

    def close(self) -> None:
        self._subscriptions.clear()
        self._latest.clear()

    # ── Inbound ───────────────────────────────────────────────────────

    def receive(self, sample: LiveLocation) -> bool:
        """Dispatch *sample* to subscribed topics; ``True`` if anyone got it."""
        topics = [driver_topic(sample.driver_id)]
        if sample.trip_id is not None:
            topics.append(trip_topic(sample.trip_id))

        delivered = False
        for topic in topics:
            callbacks = self._subscriptions.get(topic)
            if not callbacks or not sample.is_newer_than(self._latest.get(topic)):
                continue
            self._latest[topic] = sample
            delivered = True
            for callback in list(callbacks.values()):
                try:
                    callback(sample)
                except Exception:
                    logger.exception("Location subscriber failed on %s", topic)
        return delivered

    def receive_raw(self, data: Union[str, bytes, dict]) -> bool:
        try:
            if isinstance(data, dict):
                message = LocationMessage.model_validate(data)
            else:
                message = LocationMessage.model_validate_json(data)
        except PayloadError:
            logger.warning("Dropping malformed location payload: %r", data)
            return False
        return self.receive(message.to_entity())

    # ── Outbound ──────────────────────────────────────────────────────

    async def publish(self, sample: LiveLocation) -> bool:
        delivered = self.receive(sample)
        if self.redis is not None:
            payload = LocationMessage.from_entity(sample).model_dump_json()
            try:
                await self.redis.publish(
                    f"{self.prefix}:{driver_topic(sample.driver_id)}", payload
                )
            except RedisError:
                logger.warning(
                    "Live location fan-out failed for driver %s",
                    sample.driver_id,
                    exc_info=True,
                )
        return delivered

    async def listen(self) -> None:
        """Feed messages from other processes into this session until cancelled.

        A dropped Redis connection is logged and resubscribed with an
        exponential backoff capped at ``max_retry_seconds``.
        """
        if self.redis is None:
            return
        delay = self.retry_seconds
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.psubscribe(f"{self.prefix}:*")
                delay = self.retry_seconds
                async for message in pubsub.listen():
                    if message.get("type") == "pmessage":
                        self.receive_raw(message["data"])
            except RedisError:
                logger.exception(
                    "Live location listener lost Redis; reconnecting in %.1fs", delay
                )
            finally:
                try:
                    await pubsub.aclose()
                except RedisError:
                    logger.debug("Closing a broken pub/sub connection failed", exc_info=True)
            await asyncio.sleep(delay)
            delay = min(delay * 2, self.max_retry_seconds)
