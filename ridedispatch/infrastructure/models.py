"""
SQLAlchemy ORM models  (PostgreSQL in production, SQLite in tests).

Tables
------
* ``drivers``         -- driver profile + availability + last known position
* ``ride_requests``   -- rider trip requests and their lifecycle
* ``live_locations``  -- append-only driver position samples
* ``promo_codes``     -- discount codes applied at estimate time

Indexes
-------
* **B-Tree** on ``drivers.h3_cell`` for the discovery prefilter, and on
  ``ride_requests (status, timeout_at)`` for the expiry sweep predicate.
* ``live_locations (driver_id, recorded_at)`` / ``(trip_id, recorded_at)``
  to fetch the authoritative (newest) sample.
"""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import TypeDecorator

from .database import Base
from ridedispatch.domain.enums import DiscountType, RequestStatus, VehicleClass


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC timestamps on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _values(enum_cls):
    return [member.value for member in enum_cls]


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    rating = Column(Float, default=5.0, nullable=False)
    vehicle_class = Column(
        Enum(VehicleClass, values_callable=_values), default=VehicleClass.CAR
    )
    vehicle_info = Column(String(120), default="", nullable=False)
    organization = Column(String(120), nullable=True)

    is_online = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    location_updated_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow)

    __table_args__ = (
        Index("idx_drivers_cell", "h3_cell"),
        Index("idx_drivers_available", "is_online", "is_available"),
    )


class RideRequestModel(Base):
    __tablename__ = "ride_requests"

    id = Column(Integer, primary_key=True, autoincrement=True)
    passenger_id = Column(Integer, nullable=False)

    pickup_label = Column(String(255), default="", nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    drop_label = Column(String(255), default="", nullable=False)
    drop_lat = Column(Float, nullable=False)
    drop_lng = Column(Float, nullable=False)

    vehicle_class = Column(
        Enum(VehicleClass, values_callable=_values), nullable=False
    )
    fare = Column(Float, nullable=False)
    distance_km = Column(Float, default=0.0, nullable=False)
    duration_min = Column(Float, default=0.0, nullable=False)

    status = Column(
        Enum(RequestStatus, values_callable=_values),
        default=RequestStatus.SEARCHING,
        nullable=False,
    )
    matched_driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)
    search_radius_m = Column(Integer, default=5_000, nullable=False)
    timeout_at = Column(UTCDateTime, nullable=False)

    promo_code = Column(String(32), nullable=True)
    discount_amount = Column(Float, default=0.0, nullable=False)
    surge_multiplier = Column(Float, default=1.0, nullable=False)
    scheduled_time = Column(UTCDateTime, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    organization_only = Column(Boolean, default=False, nullable=False)
    organization = Column(String(120), nullable=True)

    matched_at = Column(UTCDateTime, nullable=True)
    accepted_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)
    updated_at = Column(
        UTCDateTime, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_ride_requests_status_timeout", "status", "timeout_at"),
        Index("idx_ride_requests_passenger", "passenger_id"),
        Index("idx_ride_requests_driver", "matched_driver_id"),
    )


class LiveLocationModel(Base):
    __tablename__ = "live_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=False)
    trip_id = Column(Integer, ForeignKey("ride_requests.id"), nullable=True)
    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    recorded_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("idx_live_locations_driver", "driver_id", "recorded_at"),
        Index("idx_live_locations_trip", "trip_id", "recorded_at"),
    )


class PromoCodeModel(Base):
    __tablename__ = "promo_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(32), unique=True, nullable=False)
    discount_type = Column(
        Enum(DiscountType, values_callable=_values), nullable=False
    )
    discount_value = Column(Float, nullable=False)
    max_discount = Column(Float, nullable=True)
    min_amount = Column(Float, default=0.0, nullable=False)
    max_uses = Column(Integer, nullable=True)
    current_uses = Column(Integer, default=0, nullable=False)
    valid_from = Column(UTCDateTime, nullable=True)
    valid_until = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    # comma-separated VehicleClass values; empty => all classes
    applicable_vehicle_classes = Column(String(64), default="", nullable=False)
