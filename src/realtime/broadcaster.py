"""
Location Broadcaster
====================

In-memory publish/subscribe for live driver positions and ride events.

Architecture
------------
1. A WebSocket connects -> ``SubscriberRegistry.register`` wraps it in a
   ``Subscriber`` with a bounded queue and its own sender task.
2. The tracking route persists a driver sample, then calls
   ``LocationBroadcaster.publish_location``.
3. The broadcaster filters subscribers by role and correlation keys
   (ride id, driver id, H3 area) and *offers* the event to each queue.
   Offering never awaits: a full queue drops the event for that subscriber.
4. Each sender task drains its queue in FIFO order, so events from one
   driver reach a subscriber in the order they were published.  A failed
   send marks the subscriber dead and removes it from the registry.

Liveness
--------
Every ``heartbeat_interval`` seconds each subscriber is sent ``ping``.
A subscriber still owing a ``pong`` from the previous round is pruned.

Ordering
--------
Besides FIFO delivery, the broadcaster remembers the newest ``recorded_at``
per driver and drops samples older than it, so network jitter between the
driver and the server cannot move a marker backwards.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Protocol

from src.domain.entities import LocationSample
from src.domain.enums import RideStatus, SubscriberRole
from src.domain.matching import area_cells, cell_for

logger = logging.getLogger(__name__)

_ids = itertools.count(1)


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000) -> None: ...


class Subscriber:
    """One connected actor: a connection, its filter keys and a send queue."""

    def __init__(
        self,
        connection: Connection,
        role: SubscriberRole,
        ride_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        cells: Iterable[str] = (),
        queue_size: int = 100,
        on_dead: Optional[Callable[["Subscriber"], None]] = None,
    ):
        self.id = next(_ids)
        self.connection = connection
        self.role = SubscriberRole(role)
        self.ride_id = ride_id
        self.driver_id = driver_id
        self.cells = frozenset(cells)
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self.alive = True
        self.awaiting_pong = False
        self.dropped = 0
        self._on_dead = on_dead
        self._task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<Subscriber {self.id} {self.role.value} ride={self.ride_id} driver={self.driver_id}>"

    # ── Filtering ─────────────────────────────────────────────────────

    @property
    def has_keys(self) -> bool:
        return self.ride_id is not None or self.driver_id is not None or bool(self.cells)

    def watches(
        self,
        ride_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        cell: Optional[str] = None,
    ) -> bool:
        """No keys means "everything"; otherwise any matching key is enough."""
        if not self.has_keys:
            return True
        return (
            (ride_id is not None and ride_id == self.ride_id)
            or (driver_id is not None and driver_id == self.driver_id)
            or (cell is not None and cell in self.cells)
        )

    def watches_ride(self, ride_id: int) -> bool:
        return self.ride_id is not None and self.ride_id == ride_id

    def update_keys(
        self,
        ride_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        cells: Iterable[str] = (),
    ) -> None:
        self.ride_id = ride_id
        self.driver_id = driver_id
        self.cells = frozenset(cells)

    # ── Delivery ──────────────────────────────────────────────────────

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    def offer(self, message: dict) -> bool:
        """Queue *message* without waiting; ``False`` if dropped."""
        if not self.alive:
            return False
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Subscriber %s queue full, dropping %s", self.id, message.get("type"))
            return False
        return True

    def mark_alive(self) -> None:
        self.awaiting_pong = False

    async def flush(self) -> None:
        """Wait until everything queued so far has been sent (or discarded)."""
        await self.queue.join()

    async def stop(self) -> None:
        self.alive = False
        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._drain()

    async def _pump(self) -> None:
        while self.alive:
            message = await self.queue.get()
            try:
                await self.connection.send_json(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.info("Send to subscriber %s failed, pruning", self.id, exc_info=True)
                self._mark_dead()
                return
            finally:
                self.queue.task_done()

    def _mark_dead(self) -> None:
        self.alive = False
        self._drain()
        if self._on_dead is not None:
            self._on_dead(self)

    def _drain(self) -> None:
        while True:
            try:
                self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self.queue.task_done()


class SubscriberRegistry:
    """Owns every live subscriber and the heartbeat that prunes dead ones."""

    def __init__(self, heartbeat_interval: float = 30.0, queue_size: int = 100):
        self.heartbeat_interval = heartbeat_interval
        self.queue_size = queue_size
        self._subscribers: dict[int, Subscriber] = {}
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reaper_tasks: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = asyncio.create_task(self._heartbeat())
            logger.info("Subscriber registry started (heartbeat %.1fs)", self.heartbeat_interval)

    async def close(self) -> None:
        task, self._heartbeat_task = self._heartbeat_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        for subscriber in list(self._subscribers.values()):
            await self.unregister(subscriber)
        logger.info("Subscriber registry closed")

    def register(
        self,
        connection: Connection,
        role: SubscriberRole,
        ride_id: Optional[int] = None,
        driver_id: Optional[int] = None,
        cells: Iterable[str] = (),
    ) -> Subscriber:
        subscriber = Subscriber(
            connection,
            role,
            ride_id=ride_id,
            driver_id=driver_id,
            cells=cells,
            queue_size=self.queue_size,
            on_dead=self._discard_dead,
        )
        self._subscribers[subscriber.id] = subscriber
        subscriber.start()
        logger.info("Registered %r", subscriber)
        return subscriber

    async def unregister(self, subscriber: Subscriber, close: bool = False) -> None:
        self._subscribers.pop(subscriber.id, None)
        await subscriber.stop()
        if close:
            try:
                await subscriber.connection.close()
            except Exception:
                logger.debug("Closing subscriber %s failed", subscriber.id, exc_info=True)
        logger.info("Unregistered %r", subscriber)

    def subscribers(self, role: Optional[SubscriberRole] = None) -> list[Subscriber]:
        return [
            s
            for s in self._subscribers.values()
            if s.alive and (role is None or s.role == role)
        ]

    def stats(self) -> dict:
        live = self.subscribers()
        return {
            "total": len(live),
            "drivers": sum(1 for s in live if s.role == SubscriberRole.DRIVER),
            "passengers": sum(1 for s in live if s.role == SubscriberRole.PASSENGER),
            "dropped_messages": sum(s.dropped for s in live),
        }

    async def probe(self) -> int:
        """One liveness round; returns how many subscribers were pruned."""
        pruned = 0
        for subscriber in list(self._subscribers.values()):
            if subscriber.awaiting_pong or not subscriber.alive:
                logger.info("Subscriber %s missed heartbeat, pruning", subscriber.id)
                await self.unregister(subscriber, close=True)
                pruned += 1
                continue
            # a ping dropped on a full queue is not a missed pong
            if subscriber.offer({"type": "ping"}):
                subscriber.awaiting_pong = True
        return pruned

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                await self.probe()
            except Exception:
                logger.exception("Heartbeat round failed")

    def _discard_dead(self, subscriber: Subscriber) -> None:
        # Called from the subscriber's own sender task, which must not await
        # its own cancellation; closing happens in a separate task.
        self._subscribers.pop(subscriber.id, None)
        task = asyncio.create_task(self._close_quietly(subscriber))
        self._reaper_tasks.add(task)
        task.add_done_callback(self._reaper_tasks.discard)

    async def _close_quietly(self, subscriber: Subscriber) -> None:
        try:
            await subscriber.connection.close()
        except Exception:
            logger.debug("Closing dead subscriber %s failed", subscriber.id, exc_info=True)


class LocationBroadcaster:
    def __init__(
        self,
        registry: SubscriberRegistry,
        h3_resolution: int = 7,
        area_ring: int = 1,
    ):
        self.registry = registry
        self.h3_resolution = h3_resolution
        self.area_ring = area_ring
        self._last_published: dict[int, datetime] = {}

    def area_for(self, lat: float, lng: float) -> frozenset[str]:
        return area_cells(lat, lng, self.h3_resolution, self.area_ring)

    def publish_location(self, sample: LocationSample) -> int:
        """Fan a driver sample out to passengers; returns deliveries queued."""
        last = self._last_published.get(sample.driver_id)
        if last is not None and sample.recorded_at < last:
            logger.debug(
                "Dropping stale sample for driver %s (%s < %s)",
                sample.driver_id, sample.recorded_at, last,
            )
            return 0
        self._last_published[sample.driver_id] = sample.recorded_at

        cell = sample.cell or cell_for(sample.lat, sample.lng, self.h3_resolution)
        message = {
            "type": "driver_marker_update",
            "driver_id": sample.driver_id,
            "ride_id": sample.ride_id,
            "lat": sample.lat,
            "lng": sample.lng,
            "recorded_at": sample.recorded_at.isoformat(),
        }
        return self._fan_out(
            message,
            SubscriberRole.PASSENGER,
            lambda s: s.watches(ride_id=sample.ride_id, driver_id=sample.driver_id, cell=cell),
        )

    def start_meter(self, ride_id: int, driver_id: Optional[int] = None) -> int:
        message = {"type": "meter_started", "ride_id": ride_id, "driver_id": driver_id}
        return self._fan_out(
            message, SubscriberRole.PASSENGER, lambda s: s.watches_ride(ride_id)
        )

    def publish_ride_status(
        self, ride_id: int, status: RideStatus, driver_id: Optional[int] = None
    ) -> int:
        message = {
            "type": "ride_status_changed",
            "ride_id": ride_id,
            "driver_id": driver_id,
            "status": RideStatus(status).value,
        }
        return self._fan_out(message, None, lambda s: s.watches_ride(ride_id))

    def forget_driver(self, driver_id: int) -> None:
        self._last_published.pop(driver_id, None)

    def _fan_out(
        self,
        message: dict,
        role: Optional[SubscriberRole],
        predicate: Callable[[Subscriber], bool],
    ) -> int:
        delivered = 0
        for subscriber in self.registry.subscribers(role):
            if predicate(subscriber) and subscriber.offer(message):
                delivered += 1
        return delivered
