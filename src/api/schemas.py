"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.domain.enums import Actor, DriverStatus, RoundingMode, ServiceType


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    rider_id: int
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    service_type: ServiceType = ServiceType.STANDARD
    deposit: int = Field(0, ge=0, description="Errand float advanced by the driver.")


class DriverActionRequest(BaseModel):
    driver_id: Optional[int] = None


class AcceptRequest(BaseModel):
    driver_id: int


class CompleteRequest(BaseModel):
    distance_km: Optional[float] = Field(None, ge=0)
    duration_min: Optional[float] = Field(None, ge=0)


class CancelRequest(BaseModel):
    actor: Actor = Actor.RIDER
    forced: bool = False
    reason: Optional[str] = Field(None, max_length=500)


class LocationUpdate(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    recorded_at: Optional[datetime] = None


class DriverStatusUpdate(BaseModel):
    status: DriverStatus


class FareQuoteRequest(BaseModel):
    distance_km: float = Field(..., ge=0)
    duration_min: float = Field(..., ge=0)
    service_type: ServiceType = ServiceType.STANDARD
    deposit: int = Field(0, ge=0)
    rounding: RoundingMode = RoundingMode.NEAREST


# ── Responses ─────────────────────────────────────────────────────────


class RiderResponse(BaseModel):
    id: int
    name: str
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    total_trips: int = 0

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: int
    name: str
    status: str
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    rating: Optional[float] = None
    total_trips: int = 0
    total_earnings: int = 0

    model_config = {"from_attributes": True}


class NearbyDriverResponse(DriverResponse):
    distance_km: float


class RideResponse(BaseModel):
    id: int
    rider_id: int
    driver_id: Optional[int] = None
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    status: str
    service_type: str
    deposit: int = 0
    rider_snapshot: Optional[dict] = None
    driver_snapshot: Optional[dict] = None
    driver_arrived_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    distance_km: float = 0.0
    duration_min: Optional[float] = None
    final_price: Optional[int] = None
    cancellation_fee: Optional[int] = None
    cancelled_by: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DispatchResponse(BaseModel):
    result: Literal["dispatched", "no_driver_available"]
    message: str = ""
    attempts: int = 0
    ride: Optional[RideResponse] = None
    driver: Optional[DriverResponse] = None
    rider: Optional[RiderResponse] = None


class FareBreakdownResponse(BaseModel):
    service_type: str
    rounding: str
    base_fare: float
    distance_charge: float
    duration_charge: float
    long_distance_surcharge: float
    service_multiplier: float
    multiplier_uplift: float
    service_fee: float
    deposit: float
    subtotal: float
    rounding_adjustment: float
    minimum_fare_adjustment: float
    total: int

    model_config = {"from_attributes": True}


class CompletionResponse(BaseModel):
    ride: RideResponse
    fare: FareBreakdownResponse
    settlement_price: int


class CancellationResponse(BaseModel):
    result: Literal["confirm_required", "cancelled"]
    fee: int
    ride: Optional[RideResponse] = None


class LocationAck(BaseModel):
    status: str = "ok"
    driver_id: int
    ride_id: Optional[int] = None
    cell: Optional[str] = None
    delivered: int = 0


class MeterResponse(BaseModel):
    ride_id: int
    delivered: int


class SubscriberStats(BaseModel):
    total: int
    drivers: int
    passengers: int
    dropped_messages: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
