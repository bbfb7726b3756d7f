"""
Tracking WebSocket
==================

WS /api/v1/ws/tracking?role=driver|passenger&ride_id=&driver_id=&lat=&lng=

Server -> client: ``connection_established``, ``driver_marker_update``,
``meter_started``, ``ride_status_changed``, ``ping``, ``ack``, ``error``.

Client -> server:

* ``{"type": "update_location", "lat": .., "lng": ..}``   (driver)
* ``{"type": "meter_start", "ride_id": ..}``              (driver)
* ``{"type": "subscribe", "ride_id": .., "driver_id": .., "lat": .., "lng": ..}``
  (passenger; replaces the current filter keys)
* ``{"type": "pong"}``

All outbound frames go through the subscriber's queue, so the socket has a
single writer.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import async_sessionmaker

from src.api.dependencies import (
    get_broadcaster,
    get_registry,
    get_session_factory,
    within_budget,
)
from src.config import settings
from src.domain.enums import SubscriberRole
from src.domain.entities import validate_coordinates
from src.domain.errors import (
    DriverMismatch,
    InvalidCoordinates,
    InvalidInput,
    RideServiceError,
)
from src.realtime.broadcaster import (
    LocationBroadcaster,
    Subscriber,
    SubscriberRegistry,
)
from src.services.lifecycle import RideLifecycle
from src.services.tracking import TrackingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracking"])


def _coordinates(data: dict[str, Any]) -> tuple[Optional[float], Optional[float]]:
    lat, lng = data.get("lat"), data.get("lng")
    if lat is None and lng is None:
        return None, None
    if lat is None or lng is None:
        raise InvalidCoordinates("lat and lng must be given together")
    try:
        lat, lng = float(lat), float(lng)
    except (TypeError, ValueError):
        raise InvalidCoordinates("lat and lng must be numbers") from None
    validate_coordinates(lat, lng)
    return lat, lng


def _optional_id(data: dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInput(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{key} must be an integer") from None


class TrackingSession:
    """Handles the inbound messages of one connected socket."""

    def __init__(
        self,
        subscriber: Subscriber,
        broadcaster: LocationBroadcaster,
        session_factory: async_sessionmaker,
    ):
        self.subscriber = subscriber
        self.broadcaster = broadcaster
        self.session_factory = session_factory

    def send(self, event_type: str, **payload) -> None:
        self.subscriber.offer({"type": event_type, **payload})

    def send_error(self, message: str, code: str = "error") -> None:
        self.send("error", message=message, code=code)

    async def receive(self, data: Any) -> None:
        if not isinstance(data, dict) or not data.get("type"):
            self.send_error("Message type is required", code="invalid_message")
            return

        msg_type = data["type"]
        handler = getattr(self, f"on_{msg_type}", None)
        if handler is None:
            self.send_error(f"Unknown message type: {msg_type}", code="unknown_type")
            return
        try:
            await handler(data)
        except RideServiceError as exc:
            self.send_error(str(exc), code=exc.code)
        except Exception:
            logger.exception("Error handling %s from subscriber %s", msg_type, self.subscriber.id)
            self.send_error(f"Error processing {msg_type}")

    # ── Handlers ──────────────────────────────────────────────────────

    async def on_pong(self, data: dict) -> None:
        self.subscriber.mark_alive()

    async def on_subscribe(self, data: dict) -> None:
        self._require_role(SubscriberRole.PASSENGER)
        lat, lng = _coordinates(data)
        cells = self.broadcaster.area_for(lat, lng) if lat is not None else ()
        self.subscriber.update_keys(
            ride_id=_optional_id(data, "ride_id"),
            driver_id=_optional_id(data, "driver_id"),
            cells=cells,
        )
        self.send(
            "ack",
            action="subscribe",
            ride_id=self.subscriber.ride_id,
            driver_id=self.subscriber.driver_id,
            cells=len(self.subscriber.cells),
        )

    async def on_update_location(self, data: dict) -> None:
        self._require_role(SubscriberRole.DRIVER)
        driver_id = self._own_driver_id()
        lat, lng = _coordinates(data)
        if lat is None:
            raise InvalidInput("lat and lng are required")

        async with self.session_factory() as session:
            tracking = TrackingService(session, h3_resolution=settings.h3_resolution)
            sample = await within_budget(
                tracking.report_driver_location(driver_id, lat, lng)
            )
            await within_budget(session.commit())

        delivered = self.broadcaster.publish_location(sample)
        self.send("ack", action="update_location", ride_id=sample.ride_id, delivered=delivered)

    async def on_meter_start(self, data: dict) -> None:
        self._require_role(SubscriberRole.DRIVER)
        ride_id = _optional_id(data, "ride_id") or self.subscriber.ride_id
        if ride_id is None:
            raise InvalidInput("ride_id is required")

        async with self.session_factory() as session:
            ride = await within_budget(RideLifecycle(session).get_ride(ride_id))
        driver_id = self.subscriber.driver_id
        if driver_id is not None and ride.driver_id != driver_id:
            raise DriverMismatch(f"Ride {ride.id} is not assigned to driver {driver_id}")

        delivered = self.broadcaster.start_meter(ride.id, ride.driver_id)
        self.send("ack", action="meter_start", ride_id=ride.id, delivered=delivered)

    # ── Helpers ───────────────────────────────────────────────────────

    def _require_role(self, role: SubscriberRole) -> None:
        if self.subscriber.role != role:
            raise InvalidInput(f"Only {role.value} connections may do that")

    def _own_driver_id(self) -> int:
        if self.subscriber.driver_id is None:
            raise InvalidInput("Driver connections must pass driver_id")
        return self.subscriber.driver_id


@router.websocket("/ws/tracking")
async def tracking_socket(
    websocket: WebSocket,
    role: SubscriberRole = Query(...),
    ride_id: Optional[int] = None,
    driver_id: Optional[int] = None,
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lng: Optional[float] = Query(None, ge=-180, le=180),
    registry: SubscriberRegistry = Depends(get_registry),
    broadcaster: LocationBroadcaster = Depends(get_broadcaster),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    await websocket.accept()

    cells = ()
    if role == SubscriberRole.PASSENGER and lat is not None and lng is not None:
        cells = broadcaster.area_for(lat, lng)
    subscriber = registry.register(
        websocket, role, ride_id=ride_id, driver_id=driver_id, cells=cells
    )
    handler = TrackingSession(subscriber, broadcaster, session_factory)
    handler.send(
        "connection_established",
        subscriber_id=subscriber.id,
        role=subscriber.role.value,
        ride_id=ride_id,
        driver_id=driver_id,
    )

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                handler.send_error("Frames must be JSON objects", code="invalid_message")
                continue
            await handler.receive(data)
    except WebSocketDisconnect:
        logger.debug("Subscriber %s disconnected", subscriber.id)
    finally:
        await registry.unregister(subscriber)
