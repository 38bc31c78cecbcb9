"""
Driver endpoints
================

POST  /api/v1/drivers/{driver_id}/location     -- push a live position sample
GET   /api/v1/drivers/nearby                   -- available drivers around a point
PATCH /api/v1/drivers/{driver_id}/availability -- go online / offline
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.api.dependencies import get_db, get_live_session, get_tracker
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    AvailabilityUpdate,
    CandidateResponse,
    Coordinate,
    DriverResponse,
    LocationAck,
    LocationPush,
)
from ridedispatch.config import settings
from ridedispatch.domain.entities import LiveLocation, Location
from ridedispatch.domain.enums import VehicleClass
from ridedispatch.domain.errors import ValidationError
from ridedispatch.infrastructure.live_channel import LiveLocationSession
from ridedispatch.infrastructure.repositories import (
    DriverRepository,
    LiveLocationRepository,
    RideRequestRepository,
)
from ridedispatch.services.tracking import TripTracker

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.post(
    "/{driver_id}/location",
    status_code=202,
    response_model=LocationAck,
    summary="Push a driver location sample",
    description=(
        "Stores the sample, moves the driver's indexed position (unless the "
        "sample is older than the last one) and fans it out to subscribers."
    ),
)
@limiter.limit("100/minute")
async def push_location(
    request: Request,
    driver_id: int,
    body: LocationPush,
    db: AsyncSession = Depends(get_db),
    live: LiveLocationSession = Depends(get_live_session),
    tracker: TripTracker = Depends(get_tracker),
):
    drivers = DriverRepository(db, settings.h3_resolution)
    await drivers.get(driver_id)

    trip = None
    if body.trip_id is not None:
        trip = await RideRequestRepository(db).get(body.trip_id)
        if trip.matched_driver_id != driver_id:
            raise ValidationError(
                f"Driver {driver_id} is not assigned to trip {body.trip_id}"
            )

    sample = LiveLocation(
        driver_id=driver_id,
        trip_id=body.trip_id,
        location=Location(body.lat, body.lng),
        heading=body.heading,
        speed=body.speed,
        timestamp=body.timestamp,
    )
    await LiveLocationRepository(db).append(sample)
    accepted = await drivers.update_position(sample)
    await db.commit()

    if trip is not None:
        tracker.sync(trip)
    delivered = await live.publish(sample)
    return LocationAck(accepted=accepted, delivered=delivered)


@router.get(
    "/nearby",
    response_model=list[CandidateResponse],
    summary="Available drivers near a point",
)
@limiter.limit("100/minute")
async def nearby_drivers(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_m: int = Query(settings.initial_search_radius_m, gt=0, le=settings.max_search_radius_m),
    vehicle_class: Optional[VehicleClass] = None,
    organization: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
):
    center = Coordinate(lat=lat, lng=lng).to_location()
    candidates = await DriverRepository(db, settings.h3_resolution).find_nearby(
        center, radius_m, vehicle_class=vehicle_class, organization=organization
    )
    return [CandidateResponse.from_entity(c) for c in candidates]


@router.patch(
    "/{driver_id}/availability",
    response_model=DriverResponse,
    summary="Set a driver's online / available flags",
)
@limiter.limit("100/minute")
async def update_availability(
    request: Request,
    driver_id: int,
    body: AvailabilityUpdate,
    db: AsyncSession = Depends(get_db),
):
    driver = await DriverRepository(db, settings.h3_resolution).set_availability(
        driver_id, is_online=body.is_online, is_available=body.is_available
    )
    return DriverResponse.model_validate(driver)
