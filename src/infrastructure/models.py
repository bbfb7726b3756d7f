"""
SQLAlchemy ORM models.

Tables
------
* ``riders``   -- passengers with their last shared position
* ``drivers``  -- availability status + last reported position
* ``rides``    -- one row per dispatched ride, retained after it ends

Statuses are stored as their lowercase values (``"assigned"``, ``"idle"``
...), which is the vocabulary downstream consumers read.

Indexes
-------
* **B-Tree** on ``drivers.status`` -- the dispatcher scans idle drivers.
* **B-Tree** on ``rides.status``, ``rides.rider_id``, ``rides.driver_id``
  for history look-ups and "current ride of this driver".
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)

from .database import Base
from src.domain.enums import Actor, DriverStatus, RideStatus, ServiceType


def _value_enum(enum_cls, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class RiderModel(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(32), unique=True, nullable=True)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)
    total_trips = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class DriverModel(Base):
    __tablename__ = "drivers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    phone = Column(String(32), unique=True, nullable=True)
    status = Column(
        _value_enum(DriverStatus, "driverstatus"),
        default=DriverStatus.OFFLINE,
        nullable=False,
    )
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    h3_cell = Column(String(20), nullable=True)
    location_updated_at = Column(DateTime(timezone=True), nullable=True)
    rating = Column(Float, default=5.0)
    total_trips = Column(Integer, default=0, nullable=False)
    total_earnings = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_drivers_status", "status"),
        Index("idx_drivers_cell", "h3_cell"),
    )


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("drivers.id"), nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    status = Column(
        _value_enum(RideStatus, "ridestatus"),
        default=RideStatus.ASSIGNED,
        nullable=False,
    )
    service_type = Column(
        _value_enum(ServiceType, "servicetype"),
        default=ServiceType.STANDARD,
        nullable=False,
    )
    deposit = Column(Integer, default=0, nullable=False)

    # Embedded for immediate display; not kept in sync afterwards
    rider_snapshot = Column(JSON, nullable=True)
    driver_snapshot = Column(JSON, nullable=True)

    driver_arrived_at = Column(DateTime(timezone=True), nullable=True)
    accepted_at = Column(DateTime(timezone=True), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    distance_km = Column(Float, default=0.0, nullable=False)
    duration_min = Column(Float, nullable=True)
    final_price = Column(Integer, nullable=True)

    cancellation_fee = Column(Integer, nullable=True)
    cancelled_by = Column(_value_enum(Actor, "actor"), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_rides_status", "status"),
        Index("idx_rides_rider", "rider_id"),
        Index("idx_rides_driver", "driver_id"),
    )
