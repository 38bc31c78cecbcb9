"""
Trip tracker: glues the live location channel to the geofence evaluator.

For every watched request the tracker subscribes to ``trip:<id>`` and, on
each driver tick, classifies the driver's distance to the current target
(pickup before acceptance, drop after) for two observers, the rider and the
driver.  Notifications only go out when an observer's classification
changes.  Debounce state lives in process memory only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from ridedispatch.domain.distance import format_distance
from ridedispatch.domain.entities import LiveLocation, RideRequest
from ridedispatch.domain.enums import ProximityLevel
from ridedispatch.domain.geofence import (
    DROP_PHASE,
    ProximityEvaluator,
    ProximityEvent,
    geofence_target,
)
from ridedispatch.infrastructure.live_channel import LiveLocationSession, trip_topic
from ridedispatch.infrastructure.notifications import Notification, NotificationSink

logger = logging.getLogger(__name__)


@dataclass
class _Watch:
    request: RideRequest
    dispose: Callable[[], None]


def _observers(request: RideRequest) -> tuple[tuple[str, str], ...]:
    """(observer id, notification recipient) pairs for one request."""
    return (
        (f"rider:{request.id}", f"passenger:{request.passenger_id}"),
        (f"driver:{request.id}", f"driver:{request.matched_driver_id}"),
    )


class TripTracker:
    def __init__(
        self,
        channel: LiveLocationSession,
        notifier: NotificationSink,
        evaluator: Optional[ProximityEvaluator] = None,
    ):
        self.channel = channel
        self.notifier = notifier
        self.evaluator = evaluator or ProximityEvaluator()
        self._watches: dict[int, _Watch] = {}

    def is_watching(self, request_id: int) -> bool:
        return request_id in self._watches

    def sync(self, request: RideRequest) -> None:
        """Start, retarget or stop tracking according to *request*'s status."""
        if geofence_target(request) is None or request.matched_driver_id is None:
            self.unwatch(request.id)
            return

        watch = self._watches.get(request.id)
        if watch is not None:
            if watch.request.status != request.status:
                # new target: classifications against the old one are meaningless
                self._reset(watch.request)
            watch.request = request
            return

        dispose = self.channel.subscribe(
            trip_topic(request.id),
            lambda sample, rid=request.id: self.on_location(rid, sample),
        )
        self._watches[request.id] = _Watch(request=request, dispose=dispose)
        logger.debug("Tracking request %s", request.id)

    def unwatch(self, request_id: int) -> None:
        watch = self._watches.pop(request_id, None)
        if watch is None:
            return
        watch.dispose()
        self._reset(watch.request)

    def close(self) -> None:
        for request_id in list(self._watches):
            self.unwatch(request_id)

    def on_location(self, request_id: int, sample: LiveLocation) -> list[ProximityEvent]:
        watch = self._watches.get(request_id)
        if watch is None:
            return []
        request = watch.request
        if sample.driver_id != request.matched_driver_id:
            logger.debug(
                "Ignoring location from driver %s on request %s", sample.driver_id, request_id
            )
            return []

        target = geofence_target(request)
        events = []
        for observer_id, recipient in _observers(request):
            event = self.evaluator.evaluate(observer_id, sample.location, target)
            if event is None:
                continue
            events.append(event)
            self.notifier.notify(self._notification(request, recipient, event))
        return events

    def _reset(self, request: RideRequest) -> None:
        for observer_id, _ in _observers(request):
            self.evaluator.reset(observer_id)

    @staticmethod
    def _notification(
        request: RideRequest, recipient: str, event: ProximityEvent
    ) -> Notification:
        to_drop = request.status in DROP_PHASE
        if recipient.startswith("passenger:"):
            title = "Trip update" if to_drop else "Driver update"
            message = event.message
            if to_drop:
                message = (
                    "You have reached your destination"
                    if event.level == ProximityLevel.ARRIVED
                    else f"Destination is {format_distance(event.distance_m)} away"
                )
        else:
            place = "drop-off" if to_drop else "pickup"
            title = "Navigation"
            message = (
                f"Arrived at {place}"
                if event.level == ProximityLevel.ARRIVED
                else f"{place.capitalize()} is {format_distance(event.distance_m)} {event.direction}"
            )
        return Notification(
            recipient=recipient,
            title=title,
            message=message,
            metadata={
                "request_id": request.id,
                "level": event.level.value,
                "distance_m": round(event.distance_m, 1),
                "direction": event.direction,
            },
            intensity=event.intensity,
        )
