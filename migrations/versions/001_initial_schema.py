"""Riders, drivers and rides.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

RIDE_STATUSES = (
    "requested", "assigned", "accepted", "arrived", "ongoing", "completed", "cancelled",
)
DRIVER_STATUSES = ("idle", "busy", "offline")
SERVICE_TYPES = ("standard", "errand", "designated_driver")
ACTORS = ("rider", "driver", "system")


def _status(name: str, values: tuple) -> sa.Enum:
    # stored as VARCHAR + CHECK so new values need no ALTER TYPE
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=True)


def upgrade() -> None:
    # ── riders ────────────────────────────────────────────────────────
    op.create_table(
        "riders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(32), unique=True, nullable=True),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(32), unique=True, nullable=True),
        sa.Column(
            "status",
            _status("driverstatus", DRIVER_STATUSES),
            nullable=False,
            server_default="offline",
        ),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("h3_cell", sa.String(20), nullable=True),
        sa.Column("location_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rating", sa.Float, server_default="5.0"),
        sa.Column("total_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_earnings", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_drivers_status", "drivers", ["status"])
    op.create_index("idx_drivers_cell", "drivers", ["h3_cell"])

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("rider_id", sa.Integer, sa.ForeignKey("riders.id"), nullable=False),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column(
            "status",
            _status("ridestatus", RIDE_STATUSES),
            nullable=False,
            server_default="assigned",
        ),
        sa.Column(
            "service_type",
            _status("servicetype", SERVICE_TYPES),
            nullable=False,
            server_default="standard",
        ),
        sa.Column("deposit", sa.Integer, nullable=False, server_default="0"),
        sa.Column("rider_snapshot", sa.JSON, nullable=True),
        sa.Column("driver_snapshot", sa.JSON, nullable=True),
        sa.Column("driver_arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("distance_km", sa.Float, nullable=False, server_default="0"),
        sa.Column("duration_min", sa.Float, nullable=True),
        sa.Column("final_price", sa.Integer, nullable=True),
        sa.Column("cancellation_fee", sa.Integer, nullable=True),
        sa.Column("cancelled_by", _status("actor", ACTORS), nullable=True),
        sa.Column("cancellation_reason", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("final_price IS NULL OR final_price >= 0", name="ck_rides_price"),
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_rider", "rides", ["rider_id"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])


def downgrade() -> None:
    op.drop_table("rides")
    op.drop_table("drivers")
    op.drop_table("riders")
