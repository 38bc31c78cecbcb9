"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Reads return domain entities, never ORM rows.

Every state mutation that can race is a *conditional* UPDATE whose WHERE
clause encodes the expected prior state; callers inspect the boolean
result instead of trusting a read-modify-write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    DriverModel,
    LiveLocationModel,
    PromoCodeModel,
    RideRequestModel,
)
from ridedispatch.domain.entities import (
    DriverCandidate,
    LiveLocation,
    Location,
    PromoCode,
    RideRequest,
)
from ridedispatch.domain.distance import haversine_m
from ridedispatch.domain.enums import RequestStatus, VehicleClass
from ridedispatch.domain.errors import NotFound
from ridedispatch.domain.matching import driver_h3_cell, rank_candidates, search_cells


def _ride_request_entity(row: RideRequestModel) -> RideRequest:
    return RideRequest(
        id=row.id,
        passenger_id=row.passenger_id,
        pickup=Location(row.pickup_lat, row.pickup_lng),
        drop=Location(row.drop_lat, row.drop_lng),
        pickup_label=row.pickup_label,
        drop_label=row.drop_label,
        vehicle_class=VehicleClass(row.vehicle_class),
        fare=row.fare,
        distance_km=row.distance_km,
        duration_min=row.duration_min,
        status=RequestStatus(row.status),
        matched_driver_id=row.matched_driver_id,
        search_radius_m=row.search_radius_m,
        timeout_at=row.timeout_at,
        promo_code=row.promo_code,
        discount_amount=row.discount_amount,
        surge_multiplier=row.surge_multiplier,
        scheduled_time=row.scheduled_time,
        cancellation_reason=row.cancellation_reason,
        organization_only=row.organization_only,
        organization=row.organization,
        matched_at=row.matched_at,
        accepted_at=row.accepted_at,
        cancelled_at=row.cancelled_at,
        completed_at=row.completed_at,
        created_at=row.created_at,
    )


def _live_location_entity(row: LiveLocationModel) -> LiveLocation:
    return LiveLocation(
        driver_id=row.driver_id,
        trip_id=row.trip_id,
        location=Location(row.lat, row.lng),
        heading=row.heading,
        speed=row.speed,
        timestamp=row.recorded_at,
    )


class RideRequestRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, request: RideRequest) -> RideRequest:
        row = RideRequestModel(
            passenger_id=request.passenger_id,
            pickup_label=request.pickup_label,
            pickup_lat=request.pickup.latitude,
            pickup_lng=request.pickup.longitude,
            drop_label=request.drop_label,
            drop_lat=request.drop.latitude,
            drop_lng=request.drop.longitude,
            vehicle_class=request.vehicle_class,
            fare=request.fare,
            distance_km=request.distance_km,
            duration_min=request.duration_min,
            status=request.status,
            search_radius_m=request.search_radius_m,
            timeout_at=request.timeout_at,
            promo_code=request.promo_code,
            discount_amount=request.discount_amount,
            surge_multiplier=request.surge_multiplier,
            scheduled_time=request.scheduled_time,
            organization_only=request.organization_only,
            organization=request.organization,
        )
        self.session.add(row)
        await self.session.flush()
        return _ride_request_entity(row)

    async def get_by_id(self, request_id: int) -> Optional[RideRequest]:
        row = await self.session.get(
            RideRequestModel, request_id, populate_existing=True
        )
        return _ride_request_entity(row) if row else None

    async def get(self, request_id: int) -> RideRequest:
        request = await self.get_by_id(request_id)
        if request is None:
            raise NotFound(f"Ride request {request_id} not found")
        return request

    async def compare_and_set_status(
        self,
        request_id: int,
        expected: RequestStatus | Iterable[RequestStatus],
        new_status: RequestStatus,
        **values,
    ) -> bool:
        """``UPDATE ... SET status=new WHERE id=? AND status IN expected``."""
        if isinstance(expected, RequestStatus):
            expected = (expected,)
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.status.in_(list(expected)),
            )
            .values(status=new_status, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expand_radius(self, request_id: int, new_radius_m: int) -> bool:
        """Grow the search radius; a smaller or equal value is ignored."""
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.id == request_id,
                RideRequestModel.status == RequestStatus.SEARCHING,
                RideRequestModel.search_radius_m < new_radius_m,
            )
            .values(search_radius_m=new_radius_m)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def expire_overdue(self, now: datetime) -> int:
        """Idempotent sweep: only rows still matching the predicate change."""
        result = await self.session.execute(
            update(RideRequestModel)
            .where(
                RideRequestModel.status == RequestStatus.SEARCHING,
                RideRequestModel.timeout_at < now,
            )
            .values(status=RequestStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_searching_ids(self, limit: int = 100) -> list[int]:
        result = await self.session.execute(
            select(RideRequestModel.id)
            .where(RideRequestModel.status == RequestStatus.SEARCHING)
            .order_by(RideRequestModel.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_due_scheduled(self, before: datetime) -> list[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.status == RequestStatus.PENDING,
                RideRequestModel.scheduled_time.is_not(None),
                RideRequestModel.scheduled_time <= before,
            )
            .order_by(RideRequestModel.scheduled_time)
        )
        return [_ride_request_entity(r) for r in result.scalars().all()]

    async def get_active_for_passenger(
        self, passenger_id: int
    ) -> Optional[RideRequest]:
        result = await self.session.execute(
            select(RideRequestModel)
            .where(
                RideRequestModel.passenger_id == passenger_id,
                RideRequestModel.status.in_(
                    [
                        RequestStatus.SEARCHING,
                        RequestStatus.MATCHED,
                        RequestStatus.ACCEPTED,
                    ]
                ),
            )
            .order_by(RideRequestModel.created_at.desc(), RideRequestModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _ride_request_entity(row) if row else None


class DriverRepository:
    def __init__(self, session: AsyncSession, h3_resolution: int = 7):
        self.session = session
        self.h3_resolution = h3_resolution

    async def create(self, driver: DriverModel) -> DriverModel:
        if driver.current_lat is not None and driver.current_lng is not None:
            driver.h3_cell = driver_h3_cell(
                driver.current_lat, driver.current_lng, self.h3_resolution
            )
        self.session.add(driver)
        await self.session.flush()
        return driver

    async def get_by_id(self, driver_id: int) -> Optional[DriverModel]:
        return await self.session.get(DriverModel, driver_id, populate_existing=True)

    async def get(self, driver_id: int) -> DriverModel:
        driver = await self.get_by_id(driver_id)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        return driver

    async def find_nearby(
        self,
        center: Location,
        radius_m: float,
        vehicle_class: Optional[VehicleClass] = None,
        organization: Optional[str] = None,
    ) -> list[DriverCandidate]:
        """Available drivers within *radius_m*, nearest first."""
        cells = search_cells(center, radius_m, self.h3_resolution)
        query = select(DriverModel).where(
            DriverModel.is_online.is_(True),
            DriverModel.is_available.is_(True),
            DriverModel.h3_cell.in_(sorted(cells)),
        )
        if vehicle_class is not None:
            query = query.where(DriverModel.vehicle_class == vehicle_class)
        if organization is not None:
            query = query.where(DriverModel.organization == organization)

        result = await self.session.execute(query)
        candidates = (
            DriverCandidate(
                driver_id=d.id,
                distance_m=haversine_m(
                    center.latitude, center.longitude, d.current_lat, d.current_lng
                ),
                rating=d.rating,
                vehicle_info=d.vehicle_info,
                location=Location(d.current_lat, d.current_lng),
                vehicle_class=VehicleClass(d.vehicle_class) if d.vehicle_class else None,
                organization=d.organization,
            )
            for d in result.scalars().all()
        )
        return rank_candidates(candidates, radius_m)

    async def claim(self, driver_id: int) -> bool:
        """Atomically take an available driver off the market."""
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == driver_id,
                DriverModel.is_online.is_(True),
                DriverModel.is_available.is_(True),
            )
            .values(is_available=False)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def release(self, driver_id: int) -> None:
        await self.session.execute(
            update(DriverModel)
            .where(DriverModel.id == driver_id)
            .values(is_available=True)
            .execution_options(synchronize_session=False)
        )

    async def set_availability(
        self, driver_id: int, *, is_online: bool, is_available: bool
    ) -> DriverModel:
        driver = await self.get(driver_id)
        driver.is_online = is_online
        driver.is_available = is_available
        await self.session.flush()
        return driver

    async def update_position(self, sample: LiveLocation) -> bool:
        """Move the driver's indexed position unless *sample* is stale."""
        loc = sample.location
        result = await self.session.execute(
            update(DriverModel)
            .where(
                DriverModel.id == sample.driver_id,
                or_(
                    DriverModel.location_updated_at.is_(None),
                    DriverModel.location_updated_at < sample.timestamp,
                ),
            )
            .values(
                current_lat=loc.latitude,
                current_lng=loc.longitude,
                h3_cell=driver_h3_cell(
                    loc.latitude, loc.longitude, self.h3_resolution
                ),
                location_updated_at=sample.timestamp,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class LiveLocationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, sample: LiveLocation) -> None:
        self.session.add(
            LiveLocationModel(
                driver_id=sample.driver_id,
                trip_id=sample.trip_id,
                lat=sample.location.latitude,
                lng=sample.location.longitude,
                heading=sample.heading,
                speed=sample.speed,
                recorded_at=sample.timestamp,
            )
        )
        await self.session.flush()

    async def latest_for_trip(self, trip_id: int) -> Optional[LiveLocation]:
        result = await self.session.execute(
            select(LiveLocationModel)
            .where(LiveLocationModel.trip_id == trip_id)
            .order_by(LiveLocationModel.recorded_at.desc(), LiveLocationModel.id.desc())
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _live_location_entity(row) if row else None


class PromoCodeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> PromoCode:
        result = await self.session.execute(
            select(PromoCodeModel)
            .where(PromoCodeModel.code == code.upper())
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise NotFound(f"Promo code {code} not found")
        classes = tuple(
            VehicleClass(v) for v in row.applicable_vehicle_classes.split(",") if v
        )
        return PromoCode(
            id=row.id,
            code=row.code,
            discount_type=row.discount_type,
            discount_value=row.discount_value,
            max_discount=row.max_discount,
            min_amount=row.min_amount,
            max_uses=row.max_uses,
            current_uses=row.current_uses,
            valid_from=row.valid_from,
            valid_until=row.valid_until,
            is_active=row.is_active,
            applicable_vehicle_classes=classes,
        )

    async def record_use(self, promo_id: int) -> bool:
        """Count one redemption; ``False`` once the usage limit is reached."""
        result = await self.session.execute(
            update(PromoCodeModel)
            .where(
                PromoCodeModel.id == promo_id,
                or_(
                    PromoCodeModel.max_uses.is_(None),
                    PromoCodeModel.current_uses < PromoCodeModel.max_uses,
                ),
            )
            .values(current_uses=PromoCodeModel.current_uses + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
