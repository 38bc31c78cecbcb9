"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import AwareDatetime, BaseModel, Field

from ridedispatch.domain.entities import (
    DriverCandidate,
    Location,
    NavigationInstruction,
    NavigationRoute,
    RideRequest,
)
from ridedispatch.domain.enums import ManeuverType, RequestStatus, VehicleClass
from ridedispatch.domain.pricing import FareBreakdown


# ── Shared ────────────────────────────────────────────────────────────


class Coordinate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_location(self) -> Location:
        return Location(self.lat, self.lng)

    @classmethod
    def from_location(cls, location: Location) -> "Coordinate":
        return cls(lat=location.latitude, lng=location.longitude)


# ── Requests ──────────────────────────────────────────────────────────


class FareEstimateRequest(BaseModel):
    vehicle_class: VehicleClass
    pickup: Coordinate
    drop: Coordinate
    promo_code: Optional[str] = Field(None, max_length=32)


class RideCreateRequest(BaseModel):
    passenger_id: int
    pickup: Coordinate
    drop: Coordinate
    pickup_label: str = Field("", max_length=255)
    drop_label: str = Field("", max_length=255)
    vehicle_class: VehicleClass
    fare: float = Field(..., gt=0)
    distance_km: float = Field(0.0, ge=0)
    duration_min: float = Field(0.0, ge=0)
    promo_code: Optional[str] = Field(None, max_length=32)
    discount_amount: float = Field(0.0, ge=0)
    surge_multiplier: float = Field(1.0, ge=1.0)
    scheduled_time: Optional[AwareDatetime] = None
    organization_only: bool = False
    organization: Optional[str] = Field(None, max_length=120)


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class AcceptRequest(BaseModel):
    driver_id: int


class LocationPush(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed: Optional[float] = Field(None, ge=0)
    timestamp: AwareDatetime
    trip_id: Optional[int] = None


class AvailabilityUpdate(BaseModel):
    is_online: bool
    is_available: bool


class RouteRequest(BaseModel):
    start: Coordinate
    end: Coordinate


class InstructionSchema(BaseModel):
    type: ManeuverType
    text: str
    distance_m: float
    duration_s: float
    location: Coordinate

    @classmethod
    def from_entity(cls, instruction: NavigationInstruction) -> "InstructionSchema":
        return cls(
            type=instruction.type,
            text=instruction.text,
            distance_m=instruction.distance_m,
            duration_s=instruction.duration_s,
            location=Coordinate.from_location(instruction.location),
        )

    def to_entity(self) -> NavigationInstruction:
        return NavigationInstruction(
            type=self.type,
            text=self.text,
            distance_m=self.distance_m,
            duration_s=self.duration_s,
            location=self.location.to_location(),
        )


class RouteSchema(BaseModel):
    instructions: list[InstructionSchema]
    geometry: list[Coordinate]
    total_distance_m: float
    total_duration_s: float
    synthetic: bool = False

    @classmethod
    def from_entity(cls, route: NavigationRoute) -> "RouteSchema":
        return cls(
            instructions=[InstructionSchema.from_entity(i) for i in route.instructions],
            geometry=[Coordinate.from_location(p) for p in route.geometry],
            total_distance_m=route.total_distance_m,
            total_duration_s=route.total_duration_s,
            synthetic=route.synthetic,
        )

    def to_entity(self) -> NavigationRoute:
        return NavigationRoute(
            instructions=tuple(i.to_entity() for i in self.instructions),
            geometry=tuple(p.to_location() for p in self.geometry),
            total_distance_m=self.total_distance_m,
            total_duration_s=self.total_duration_s,
            synthetic=self.synthetic,
        )


class RerouteRequest(BaseModel):
    current: Coordinate
    destination: Coordinate
    route: RouteSchema
    threshold_m: float = Field(100.0, gt=0)


class CurrentInstructionRequest(BaseModel):
    current: Coordinate
    instructions: list[InstructionSchema]
    threshold_m: float = Field(50.0, gt=0)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    passenger_id: int
    pickup: Coordinate
    drop: Coordinate
    pickup_label: str
    drop_label: str
    vehicle_class: VehicleClass
    fare: float
    distance_km: float
    duration_min: float
    status: RequestStatus
    matched_driver_id: Optional[int] = None
    search_radius_m: int
    timeout_at: datetime
    promo_code: Optional[str] = None
    discount_amount: float
    surge_multiplier: float
    scheduled_time: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    organization_only: bool
    matched_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    message: Optional[str] = None

    @classmethod
    def from_entity(cls, request: RideRequest) -> "RideResponse":
        message = None
        if request.status == RequestStatus.EXPIRED:
            message = "No drivers found. Please retry."
        return cls(
            id=request.id,
            passenger_id=request.passenger_id,
            pickup=Coordinate.from_location(request.pickup),
            drop=Coordinate.from_location(request.drop),
            pickup_label=request.pickup_label,
            drop_label=request.drop_label,
            vehicle_class=request.vehicle_class,
            fare=request.fare,
            distance_km=request.distance_km,
            duration_min=request.duration_min,
            status=request.status,
            matched_driver_id=request.matched_driver_id,
            search_radius_m=request.search_radius_m,
            timeout_at=request.timeout_at,
            promo_code=request.promo_code,
            discount_amount=request.discount_amount,
            surge_multiplier=request.surge_multiplier,
            scheduled_time=request.scheduled_time,
            cancellation_reason=request.cancellation_reason,
            organization_only=request.organization_only,
            matched_at=request.matched_at,
            accepted_at=request.accepted_at,
            cancelled_at=request.cancelled_at,
            completed_at=request.completed_at,
            created_at=request.created_at,
            message=message,
        )


class MatchResponse(BaseModel):
    matched: bool
    ride: RideResponse


class FareResponse(BaseModel):
    vehicle_class: VehicleClass
    distance_km: float
    duration_min: float
    eta_minutes: int
    base_fare: float
    distance_charge: float
    time_charge: float
    surge_multiplier: float
    surge_amount: float
    platform_fee: float
    tax: float
    discount: float
    total_fare: float
    promo_code: Optional[str] = None
    currency: str

    @classmethod
    def from_breakdown(
        cls, fare: FareBreakdown, distance_km: float, duration_min: float, eta_minutes: int
    ) -> "FareResponse":
        return cls(
            vehicle_class=fare.vehicle_class,
            distance_km=round(distance_km, 2),
            duration_min=round(duration_min, 1),
            eta_minutes=eta_minutes,
            base_fare=fare.base_fare,
            distance_charge=round(fare.distance_charge, 2),
            time_charge=round(fare.time_charge, 2),
            surge_multiplier=fare.surge_multiplier,
            surge_amount=round(fare.surge_amount, 2),
            platform_fee=round(fare.platform_fee, 2),
            tax=round(fare.tax, 2),
            discount=fare.discount,
            total_fare=fare.total_fare,
            promo_code=fare.promo_code,
            currency=fare.currency,
        )


class CandidateResponse(BaseModel):
    driver_id: int
    distance_m: float
    rating: float
    vehicle_info: str
    location: Coordinate

    @classmethod
    def from_entity(cls, candidate: DriverCandidate) -> "CandidateResponse":
        return cls(
            driver_id=candidate.driver_id,
            distance_m=round(candidate.distance_m, 1),
            rating=candidate.rating,
            vehicle_info=candidate.vehicle_info,
            location=Coordinate.from_location(candidate.location),
        )


class DriverResponse(BaseModel):
    id: int
    name: str
    rating: float
    vehicle_class: Optional[VehicleClass] = None
    is_online: bool
    is_available: bool
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None

    model_config = {"from_attributes": True}


class LocationAck(BaseModel):
    accepted: bool
    delivered: bool


class RerouteResponse(BaseModel):
    off_route: bool
    route: Optional[RouteSchema] = None


class CurrentInstructionResponse(BaseModel):
    current: Optional[InstructionSchema] = None
    next: Optional[InstructionSchema] = None
    spoken: Optional[str] = None


class SweepResponse(BaseModel):
    expired: int
    activated: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
