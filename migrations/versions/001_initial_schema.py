"""Initial schema: drivers, ride requests, live locations and promo codes.

Revision ID: 001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


VEHICLE_CLASSES = ("bike", "auto", "car")
REQUEST_STATUSES = (
    "pending",
    "searching",
    "matched",
    "accepted",
    "completed",
    "cancelled",
    "expired",
)


def upgrade() -> None:
    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column(
            "vehicle_class",
            sa.Enum(*VEHICLE_CLASSES, name="vehicleclass"),
            nullable=True,
        ),
        sa.Column("vehicle_info", sa.String(120), nullable=False, server_default=""),
        sa.Column("organization", sa.String(120), nullable=True),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("is_available", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])
    op.create_index("idx_drivers_available", "drivers", ["is_online", "is_available"])

    # ── ride_requests ─────────────────────────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("passenger_id", sa.Integer, nullable=False),
        sa.Column("pickup_label", sa.String(255), nullable=False, server_default=""),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("drop_label", sa.String(255), nullable=False, server_default=""),
        sa.Column("drop_lat", sa.Float, nullable=False),
        sa.Column("drop_lng", sa.Float, nullable=False),
        sa.Column(
            "vehicle_class",
            postgresql.ENUM(*VEHICLE_CLASSES, name="vehicleclass", create_type=False),
            nullable=False,
        ),
        sa.Column("fare", sa.Float, nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False, server_default="0"),
        sa.Column("duration_min", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(*REQUEST_STATUSES, name="requeststatus"),
            nullable=False,
            server_default="searching",
        ),
        sa.Column(
            "matched_driver_id",
            sa.Integer,
            sa.ForeignKey("drivers.id"),
            nullable=True,
        ),
        sa.Column("search_radius_m", sa.Integer, nullable=False, server_default="5000"),
        sa.Column("timeout_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("promo_code", sa.String(32), nullable=True),
        sa.Column("discount_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column("surge_multiplier", sa.Float, nullable=False, server_default="1.0"),
        sa.Column("scheduled_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column(
            "organization_only", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("organization", sa.String(120), nullable=True),
        sa.Column("matched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_ride_requests_status_timeout", "ride_requests", ["status", "timeout_at"]
    )
    op.create_index("idx_ride_requests_passenger", "ride_requests", ["passenger_id"])
    op.create_index("idx_ride_requests_driver", "ride_requests", ["matched_driver_id"])

    # ── live_locations ────────────────────────────────────────────────
    op.create_table(
        "live_locations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False),
        sa.Column(
            "trip_id", sa.Integer, sa.ForeignKey("ride_requests.id"), nullable=True
        ),
        sa.Column("lat", sa.Float, nullable=False),
        sa.Column("lng", sa.Float, nullable=False),
        sa.Column("heading", sa.Float, nullable=True),
        sa.Column("speed", sa.Float, nullable=True),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_live_locations_driver", "live_locations", ["driver_id", "recorded_at"]
    )
    op.create_index(
        "idx_live_locations_trip", "live_locations", ["trip_id", "recorded_at"]
    )

    # ── promo_codes ───────────────────────────────────────────────────
    op.create_table(
        "promo_codes",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(32), unique=True, nullable=False),
        sa.Column(
            "discount_type",
            sa.Enum("percentage", "fixed", name="discounttype"),
            nullable=False,
        ),
        sa.Column("discount_value", sa.Float, nullable=False),
        sa.Column("max_discount", sa.Float, nullable=True),
        sa.Column("min_amount", sa.Float, nullable=False, server_default="0"),
        sa.Column("max_uses", sa.Integer, nullable=True),
        sa.Column("current_uses", sa.Integer, nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "applicable_vehicle_classes",
            sa.String(64),
            nullable=False,
            server_default="",
        ),
    )


def downgrade() -> None:
    op.drop_table("promo_codes")
    op.drop_table("live_locations")
    op.drop_table("ride_requests")
    op.drop_table("drivers")
    op.execute("DROP TYPE IF EXISTS discounttype")
    op.execute("DROP TYPE IF EXISTS requeststatus")
    op.execute("DROP TYPE IF EXISTS vehicleclass")
