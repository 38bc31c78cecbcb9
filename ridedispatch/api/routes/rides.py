"""
Ride request endpoints
======================

POST  /api/v1/rides/estimate          -- price a trip (fare breakdown + ETA)
POST  /api/v1/rides                   -- create a ride request (202 Accepted)
GET   /api/v1/rides/active            -- passenger's current request
GET   /api/v1/rides/{ride_id}         -- request status
GET   /api/v1/rides/{ride_id}/location -- latest driver position for the trip
POST  /api/v1/rides/{ride_id}/match   -- run one auto-match attempt now
PATCH /api/v1/rides/{ride_id}/cancel  -- cancel (reason required)
PATCH /api/v1/rides/{ride_id}/accept  -- driver accepts the match
PATCH /api/v1/rides/{ride_id}/complete -- trip finished
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.api.dependencies import get_db, get_navigation, get_tracker
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    AcceptRequest,
    CancelRequest,
    FareEstimateRequest,
    FareResponse,
    LocationPush,
    MatchResponse,
    RideCreateRequest,
    RideResponse,
)
from ridedispatch.config import settings
from ridedispatch.domain.pricing import PricingEngine, estimate_eta_minutes
from ridedispatch.infrastructure.repositories import (
    LiveLocationRepository,
    PromoCodeRepository,
)
from ridedispatch.services.lifecycle import RequestLifecycleManager, RideRequestParams
from ridedispatch.services.matching import MatchingEngine
from ridedispatch.services.navigation import NavigationService
from ridedispatch.services.tracking import TripTracker

router = APIRouter(prefix="/rides", tags=["rides"])

pricing = PricingEngine(
    platform_fee_rate=settings.platform_fee_rate,
    tax_rate=settings.tax_rate,
    currency=settings.currency,
    tz=ZoneInfo(settings.pricing_timezone),
)


@router.post(
    "/estimate",
    response_model=FareResponse,
    summary="Estimate the fare for a trip",
)
@limiter.limit("100/minute")
async def estimate_fare(
    request: Request,
    body: FareEstimateRequest,
    db: AsyncSession = Depends(get_db),
    navigation: NavigationService = Depends(get_navigation),
):
    route = await navigation.get_instructions(
        body.pickup.to_location(), body.drop.to_location()
    )
    distance_km = route.total_distance_m / 1000
    duration_min = route.total_duration_s / 60

    promo = None
    if body.promo_code:
        promo = await PromoCodeRepository(db).get_by_code(body.promo_code)

    fare = pricing.estimate(
        body.vehicle_class,
        distance_km,
        duration_min,
        when=datetime.now(timezone.utc),
        promo=promo,
    )
    return FareResponse.from_breakdown(
        fare, distance_km, duration_min, estimate_eta_minutes(distance_km)
    )


@router.post(
    "",
    status_code=202,
    response_model=RideResponse,
    summary="Create a ride request",
    responses={202: {"description": "Ride request accepted; matching is async."}},
)
@limiter.limit("100/minute")
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
):
    ride = await RequestLifecycleManager(db).create(
        RideRequestParams(
            passenger_id=body.passenger_id,
            pickup=body.pickup.to_location(),
            drop=body.drop.to_location(),
            pickup_label=body.pickup_label,
            drop_label=body.drop_label,
            vehicle_class=body.vehicle_class,
            fare=body.fare,
            distance_km=body.distance_km,
            duration_min=body.duration_min,
            promo_code=body.promo_code,
            discount_amount=body.discount_amount,
            surge_multiplier=body.surge_multiplier,
            scheduled_time=body.scheduled_time,
            organization_only=body.organization_only,
            organization=body.organization,
        )
    )
    return RideResponse.from_entity(ride)


@router.get(
    "/active",
    response_model=RideResponse,
    summary="Get a passenger's active ride request",
)
@limiter.limit("100/minute")
async def get_active_ride(
    request: Request,
    passenger_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RequestLifecycleManager(db).active_for_passenger(passenger_id)
    if ride is None:
        raise HTTPException(status_code=404, detail="No active ride request")
    return RideResponse.from_entity(ride)


@router.get(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Get ride request status",
)
@limiter.limit("100/minute")
async def get_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    ride = await RequestLifecycleManager(db).get(ride_id)
    return RideResponse.from_entity(ride)


@router.get(
    "/{ride_id}/location",
    response_model=LocationPush,
    summary="Latest driver position for a trip",
)
@limiter.limit("100/minute")
async def get_trip_location(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
):
    sample = await LiveLocationRepository(db).latest_for_trip(ride_id)
    if sample is None:
        raise HTTPException(status_code=404, detail="No location yet for this trip")
    return LocationPush(
        lat=sample.location.latitude,
        lng=sample.location.longitude,
        heading=sample.heading,
        speed=sample.speed,
        timestamp=sample.timestamp,
        trip_id=sample.trip_id,
    )


@router.post(
    "/{ride_id}/match",
    response_model=MatchResponse,
    summary="Run one auto-match attempt",
    description=(
        "Assigns the nearest available driver.  When nobody is in range "
        "the search radius grows and ``matched`` is false."
    ),
)
@limiter.limit("100/minute")
async def match_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
    tracker: TripTracker = Depends(get_tracker),
):
    matched = await MatchingEngine(db).auto_match(ride_id)
    ride = await RequestLifecycleManager(db).get(ride_id)
    if matched:
        tracker.sync(ride)
    return MatchResponse(matched=matched, ride=RideResponse.from_entity(ride))


@router.patch(
    "/{ride_id}/cancel",
    response_model=RideResponse,
    summary="Cancel a ride request",
    description="Legal from any non-terminal status; frees the matched driver.",
)
@limiter.limit("100/minute")
async def cancel_ride(
    request: Request,
    ride_id: int,
    body: CancelRequest,
    db: AsyncSession = Depends(get_db),
    tracker: TripTracker = Depends(get_tracker),
):
    ride = await RequestLifecycleManager(db).cancel(ride_id, body.reason)
    tracker.sync(ride)
    return RideResponse.from_entity(ride)


@router.patch(
    "/{ride_id}/accept",
    response_model=RideResponse,
    summary="Driver accepts a matched request",
)
@limiter.limit("100/minute")
async def accept_ride(
    request: Request,
    ride_id: int,
    body: AcceptRequest,
    db: AsyncSession = Depends(get_db),
    tracker: TripTracker = Depends(get_tracker),
):
    ride = await RequestLifecycleManager(db).accept(ride_id, body.driver_id)
    tracker.sync(ride)
    return RideResponse.from_entity(ride)


@router.patch(
    "/{ride_id}/complete",
    response_model=RideResponse,
    summary="Complete an accepted trip",
)
@limiter.limit("100/minute")
async def complete_ride(
    request: Request,
    ride_id: int,
    db: AsyncSession = Depends(get_db),
    tracker: TripTracker = Depends(get_tracker),
):
    ride = await RequestLifecycleManager(db).complete(ride_id)
    tracker.sync(ride)
    return RideResponse.from_entity(ride)
