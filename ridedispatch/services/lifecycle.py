"""
Request Lifecycle Manager
=========================

Owns the ride-request state machine::

    pending -> searching -> matched -> accepted -> completed
        \\           \\          \\          \\
         +-----------+----------+--> cancelled (manual, reason required)
         +-----------+----------+--> expired   (timeout sweep)

Every transition is a compare-and-swap on the status observed when the
request was loaded.  If another writer got there first the update touches
no row and the caller gets ``ConcurrencyConflict`` instead of silently
overwriting the winner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.config import settings
from ridedispatch.domain.entities import Location, RideRequest
from ridedispatch.domain.enums import (
    DRIVER_HOLDING_STATUSES,
    RequestStatus,
    VehicleClass,
)
from ridedispatch.domain.errors import ConcurrencyConflict, ValidationError
from ridedispatch.domain.pricing import (
    discount_strategy_for,
    round_half_up,
    validate_promo,
)
from ridedispatch.infrastructure.repositories import (
    DriverRepository,
    PromoCodeRepository,
    RideRequestRepository,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RideRequestParams:
    passenger_id: int
    pickup: Location
    drop: Location
    vehicle_class: VehicleClass | str
    fare: float
    distance_km: float = 0.0
    duration_min: float = 0.0
    pickup_label: str = ""
    drop_label: str = ""
    promo_code: Optional[str] = None
    discount_amount: float = 0.0
    surge_multiplier: float = 1.0
    scheduled_time: Optional[datetime] = None
    organization_only: bool = False
    organization: Optional[str] = None


class RequestLifecycleManager:
    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Clock = utc_now,
        timeout_minutes: int = settings.request_timeout_minutes,
        initial_radius_m: int = settings.initial_search_radius_m,
        activation_lead_minutes: int = settings.scheduled_activation_lead_minutes,
    ):
        self.session = session
        self.requests = RideRequestRepository(session)
        self.drivers = DriverRepository(session, settings.h3_resolution)
        self.promos = PromoCodeRepository(session)
        self.clock = clock
        self.timeout = timedelta(minutes=timeout_minutes)
        self.initial_radius_m = initial_radius_m
        self.activation_lead = timedelta(minutes=activation_lead_minutes)

    # ── Queries ───────────────────────────────────────────────────────

    async def get(self, request_id: int) -> RideRequest:
        return await self.requests.get(request_id)

    async def active_for_passenger(self, passenger_id: int) -> Optional[RideRequest]:
        return await self.requests.get_active_for_passenger(passenger_id)

    # ── Commands ──────────────────────────────────────────────────────

    async def create(self, params: RideRequestParams) -> RideRequest:
        now = self.clock()
        vehicle_class = self._validate(params, now)
        promo_code = await self._redeem_promo(params, vehicle_class, now)

        if params.scheduled_time is not None:
            status = RequestStatus.PENDING
            timeout_at = params.scheduled_time + self.timeout
        else:
            status = RequestStatus.SEARCHING
            timeout_at = now + self.timeout

        request = await self.requests.create(
            RideRequest(
                passenger_id=params.passenger_id,
                pickup=params.pickup,
                drop=params.drop,
                pickup_label=params.pickup_label,
                drop_label=params.drop_label,
                vehicle_class=vehicle_class,
                fare=params.fare,
                distance_km=params.distance_km,
                duration_min=params.duration_min,
                status=status,
                search_radius_m=self.initial_radius_m,
                timeout_at=timeout_at,
                promo_code=promo_code,
                discount_amount=params.discount_amount,
                surge_multiplier=params.surge_multiplier,
                scheduled_time=params.scheduled_time,
                organization_only=params.organization_only,
                organization=params.organization,
            )
        )
        await self.session.commit()
        logger.info(
            "Ride request %s created for passenger %s (%s)",
            request.id,
            request.passenger_id,
            request.status.value,
        )
        return request

    async def cancel(self, request_id: int, reason: str) -> RideRequest:
        if not reason or not reason.strip():
            raise ValidationError("A cancellation reason is required")
        request = await self.requests.get(request_id)
        previous = request.status
        await self._transition(
            request,
            RequestStatus.CANCELLED,
            cancelled_at=self.clock(),
            cancellation_reason=reason.strip(),
        )
        if previous in DRIVER_HOLDING_STATUSES and request.matched_driver_id:
            await self.drivers.release(request.matched_driver_id)
        await self.session.commit()
        logger.info("Ride request %s cancelled from %s", request_id, previous.value)
        return await self.requests.get(request_id)

    async def accept(self, request_id: int, driver_id: Optional[int] = None) -> RideRequest:
        request = await self.requests.get(request_id)
        if driver_id is not None and request.matched_driver_id not in (None, driver_id):
            raise ValidationError(
                f"Driver {driver_id} is not assigned to request {request_id}"
            )
        await self._transition(
            request, RequestStatus.ACCEPTED, accepted_at=self.clock()
        )
        await self.session.commit()
        return await self.requests.get(request_id)

    async def complete(self, request_id: int) -> RideRequest:
        request = await self.requests.get(request_id)
        await self._transition(
            request, RequestStatus.COMPLETED, completed_at=self.clock()
        )
        if request.matched_driver_id:
            await self.drivers.release(request.matched_driver_id)
        await self.session.commit()
        return await self.requests.get(request_id)

    async def activate(self, request_id: int) -> RideRequest:
        """Start searching for a scheduled (pending) request."""
        request = await self.requests.get(request_id)
        await self._transition(
            request, RequestStatus.SEARCHING, timeout_at=self.clock() + self.timeout
        )
        await self.session.commit()
        return await self.requests.get(request_id)

    # ── Background sweeps ─────────────────────────────────────────────

    async def expire_sweep(self) -> int:
        """Expire every searching request past its timeout.  Idempotent."""
        expired = await self.requests.expire_overdue(self.clock())
        await self.session.commit()
        if expired:
            logger.info("Expired %d ride request(s): no drivers found", expired)
        return expired

    async def activate_due_scheduled(self) -> int:
        now = self.clock()
        activated = 0
        for request in await self.requests.get_due_scheduled(now + self.activation_lead):
            if await self.requests.compare_and_set_status(
                request.id,
                RequestStatus.PENDING,
                RequestStatus.SEARCHING,
                timeout_at=max(now, request.scheduled_time) + self.timeout,
            ):
                activated += 1
        await self.session.commit()
        if activated:
            logger.info("Activated %d scheduled ride request(s)", activated)
        return activated

    # ── Internals ─────────────────────────────────────────────────────

    async def _transition(
        self, request: RideRequest, new_status: RequestStatus, **values
    ) -> None:
        previous = request.status
        request.transition_to(new_status)
        swapped = await self.requests.compare_and_set_status(
            request.id, previous, new_status, **values
        )
        if not swapped:
            await self.session.rollback()
            raise ConcurrencyConflict(
                f"Request {request.id} changed while moving "
                f"{previous.value} -> {new_status.value}"
            )

    async def _redeem_promo(
        self, params: RideRequestParams, vehicle_class: VehicleClass, now: datetime
    ) -> Optional[str]:
        """Check the promo against the quoted fare and count one use.

        The usage counter is bumped in the request's transaction, so a
        failed create never consumes a redemption.
        """
        if not params.promo_code:
            return None
        promo = await self.promos.get_by_code(params.promo_code)
        validate_promo(promo, params.fare, vehicle_class, now)

        allowed = min(discount_strategy_for(promo).discount_for(params.fare), params.fare)
        if params.discount_amount > round_half_up(allowed, 2):
            raise ValidationError(
                f"Discount of {params.discount_amount:g} exceeds what {promo.code} allows"
            )
        if not await self.promos.record_use(promo.id):
            raise ValidationError(f"Promo code {promo.code} usage limit reached")
        return promo.code

    def _validate(self, params: RideRequestParams, now: datetime) -> VehicleClass:
        params.pickup.validate()
        params.drop.validate()
        try:
            vehicle_class = VehicleClass(params.vehicle_class)
        except ValueError:
            raise ValidationError(
                f"Unknown vehicle class: {params.vehicle_class!r}"
            ) from None
        if params.fare <= 0:
            raise ValidationError("Fare must be greater than zero")
        if params.surge_multiplier < 1.0:
            raise ValidationError("Surge multiplier cannot be below 1.0")
        if params.discount_amount < 0:
            raise ValidationError("Discount cannot be negative")
        if params.discount_amount > params.fare:
            raise ValidationError("Discount cannot exceed the fare")
        if params.discount_amount > 0 and not params.promo_code:
            raise ValidationError("A discount requires a promo code")
        if params.organization_only and not params.organization:
            raise ValidationError("Organization-only requests need an organization")
        if params.scheduled_time is not None:
            if params.scheduled_time.tzinfo is None:
                raise ValidationError("Scheduled time must be timezone-aware")
            if params.scheduled_time <= now:
                raise ValidationError("Scheduled time must be in the future")
        return vehicle_class
