"""
Notification / haptic sink.

``notify`` never blocks and never raises: geofence evaluation calls it from
the location-tick path.  The Redis sink schedules the publish on the running
loop and logs delivery failures.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import redis.asyncio as aioredis
from pydantic import BaseModel, Field
from redis.exceptions import RedisError

from ridedispatch.domain.enums import HapticIntensity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    recipient: str
    title: str
    message: str
    metadata: dict[str, Any] = field(default_factory=dict)
    intensity: HapticIntensity = HapticIntensity.NONE


class NotificationMessage(BaseModel):
    """Wire shape published on ``notifications:<recipient>``."""

    title: str
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    intensity: HapticIntensity = HapticIntensity.NONE

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationMessage":
        return cls(
            title=notification.title,
            message=notification.message,
            metadata=notification.metadata,
            intensity=notification.intensity,
        )


class NotificationSink(ABC):
    @abstractmethod
    def notify(self, notification: Notification) -> None: ...


class RedisNotificationSink(NotificationSink):
    """Publishes JSON to ``notifications:<recipient>``."""

    def __init__(self, client: aioredis.Redis):
        self.redis = client
        self._pending: set[asyncio.Task] = set()

    def notify(self, notification: Notification) -> None:
        task = asyncio.get_running_loop().create_task(self._publish(notification))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish(self, notification: Notification) -> None:
        payload = NotificationMessage.from_notification(notification).model_dump_json()
        try:
            await self.redis.publish(f"notifications:{notification.recipient}", payload)
        except RedisError:
            logger.warning(
                "Dropped notification for %s", notification.recipient, exc_info=True
            )

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
