"""
Location broadcaster tests.

Subscribers are backed by ``FakeConnection`` objects; ``flush()`` waits
for a subscriber's sender task to drain its queue.
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from src.domain.entities import LocationSample
from src.domain.enums import RideStatus, SubscriberRole
from src.domain.matching import cell_for
from src.realtime.broadcaster import LocationBroadcaster, SubscriberRegistry

T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)
STATION = (25.0478, 121.5170)


def _sample(driver_id=1, seconds=0, ride_id=None, lat=STATION[0], lng=STATION[1]):
    return LocationSample(
        driver_id=driver_id,
        lat=lat,
        lng=lng,
        recorded_at=T0 + timedelta(seconds=seconds),
        ride_id=ride_id,
        cell=cell_for(lat, lng, 7),
    )


@pytest_asyncio.fixture
async def registry():
    reg = SubscriberRegistry(heartbeat_interval=3600, queue_size=100)
    yield reg
    await reg.close()


@pytest.fixture
def broadcaster(registry):
    return LocationBroadcaster(registry, h3_resolution=7, area_ring=1)


# ── Filtering ────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_unkeyed_passenger_gets_every_update(registry, broadcaster, fake_connection):
    conn = fake_connection()
    sub = registry.register(conn, SubscriberRole.PASSENGER)

    assert broadcaster.publish_location(_sample(driver_id=1)) == 1
    assert broadcaster.publish_location(_sample(driver_id=2)) == 1
    await sub.flush()

    updates = conn.of_type("driver_marker_update")
    assert [u["driver_id"] for u in updates] == [1, 2]
    assert updates[0]["recorded_at"] == T0.isoformat()


@pytest.mark.asyncio
async def test_keyed_subscribers_match_any_key(registry, broadcaster, fake_connection):
    by_ride, by_driver, by_area, unrelated = (fake_connection() for _ in range(4))
    subs = [
        registry.register(by_ride, SubscriberRole.PASSENGER, ride_id=7),
        registry.register(by_driver, SubscriberRole.PASSENGER, driver_id=3),
        registry.register(
            by_area, SubscriberRole.PASSENGER, cells=broadcaster.area_for(*STATION)
        ),
        registry.register(unrelated, SubscriberRole.PASSENGER, ride_id=99, driver_id=99),
    ]

    broadcaster.publish_location(_sample(driver_id=3, ride_id=7))
    broadcaster.publish_location(_sample(driver_id=4, lat=22.6273, lng=120.3014))  # far away
    for sub in subs:
        await sub.flush()

    assert len(by_ride.of_type("driver_marker_update")) == 1
    assert len(by_driver.of_type("driver_marker_update")) == 1
    assert len(by_area.of_type("driver_marker_update")) == 1
    assert unrelated.of_type("driver_marker_update") == []


@pytest.mark.asyncio
async def test_drivers_do_not_receive_marker_updates(registry, broadcaster, fake_connection):
    driver_conn = fake_connection()
    sub = registry.register(driver_conn, SubscriberRole.DRIVER, driver_id=1)

    assert broadcaster.publish_location(_sample(driver_id=1)) == 0
    await sub.flush()
    assert driver_conn.sent == []


@pytest.mark.asyncio
async def test_meter_started_only_for_watchers_of_the_ride(
    registry, broadcaster, fake_connection
):
    watcher, other, unkeyed = fake_connection(), fake_connection(), fake_connection()
    subs = [
        registry.register(watcher, SubscriberRole.PASSENGER, ride_id=7),
        registry.register(other, SubscriberRole.PASSENGER, ride_id=8),
        registry.register(unkeyed, SubscriberRole.PASSENGER),
    ]

    assert broadcaster.start_meter(7, driver_id=3) == 1
    for sub in subs:
        await sub.flush()

    assert watcher.of_type("meter_started") == [
        {"type": "meter_started", "ride_id": 7, "driver_id": 3}
    ]
    assert other.sent == []
    assert unkeyed.sent == []


@pytest.mark.asyncio
async def test_ride_status_reaches_both_roles(registry, broadcaster, fake_connection):
    passenger, driver = fake_connection(), fake_connection()
    subs = [
        registry.register(passenger, SubscriberRole.PASSENGER, ride_id=7),
        registry.register(driver, SubscriberRole.DRIVER, ride_id=7),
    ]

    assert broadcaster.publish_ride_status(7, RideStatus.ACCEPTED, driver_id=3) == 2
    for sub in subs:
        await sub.flush()
    assert passenger.of_type("ride_status_changed")[0]["status"] == "accepted"
    assert driver.of_type("ride_status_changed")[0]["status"] == "accepted"


@pytest.mark.asyncio
async def test_update_keys_replaces_filter(registry, broadcaster, fake_connection):
    conn = fake_connection()
    sub = registry.register(conn, SubscriberRole.PASSENGER, ride_id=1)
    sub.update_keys(driver_id=5)

    broadcaster.publish_location(_sample(driver_id=5, ride_id=2))
    broadcaster.publish_location(_sample(driver_id=6, ride_id=1))
    await sub.flush()

    assert [m["driver_id"] for m in conn.of_type("driver_marker_update")] == [5]


# ── Ordering ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_per_driver_order_under_jitter(registry, broadcaster, fake_connection):
    """Samples arrive shuffled; a subscriber never sees a marker go backwards."""
    rng = random.Random(42)
    conn = fake_connection(lag=0.001)
    sub = registry.register(conn, SubscriberRole.PASSENGER)

    arrivals = [(driver_id, second) for driver_id in (1, 2, 3) for second in range(30)]
    rng.shuffle(arrivals)

    async def deliver(driver_id, second):
        await asyncio.sleep(rng.random() / 1000)
        broadcaster.publish_location(_sample(driver_id=driver_id, seconds=second))

    await asyncio.gather(*(deliver(d, s) for d, s in arrivals))
    await sub.flush()

    seen: dict[int, list[str]] = {}
    for update in conn.of_type("driver_marker_update"):
        seen.setdefault(update["driver_id"], []).append(update["recorded_at"])
    assert set(seen) == {1, 2, 3}
    for stamps in seen.values():
        assert stamps == sorted(stamps)


@pytest.mark.asyncio
async def test_stale_sample_dropped(registry, broadcaster, fake_connection):
    conn = fake_connection()
    sub = registry.register(conn, SubscriberRole.PASSENGER)

    assert broadcaster.publish_location(_sample(seconds=10)) == 1
    assert broadcaster.publish_location(_sample(seconds=5)) == 0
    assert broadcaster.publish_location(_sample(seconds=10)) == 1
    await sub.flush()
    assert len(conn.sent) == 2

    broadcaster.forget_driver(1)
    assert broadcaster.publish_location(_sample(seconds=0)) == 1


# ── Backpressure and failures ────────────────────────────────────────


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking(fake_connection):
    registry = SubscriberRegistry(heartbeat_interval=3600, queue_size=2)
    broadcaster = LocationBroadcaster(registry)
    conn = fake_connection(lag=0.05)
    sub = registry.register(conn, SubscriberRole.PASSENGER)

    delivered = [broadcaster.publish_location(_sample(seconds=i)) for i in range(10)]

    assert sum(delivered) < 10
    assert sub.dropped > 0
    assert registry.stats()["dropped_messages"] == sub.dropped
    await registry.close()


@pytest.mark.asyncio
async def test_failed_send_prunes_subscriber(registry, broadcaster, fake_connection):
    healthy, broken = fake_connection(), fake_connection(fail=True)
    ok_sub = registry.register(healthy, SubscriberRole.PASSENGER)
    bad_sub = registry.register(broken, SubscriberRole.PASSENGER)

    broadcaster.publish_location(_sample(seconds=1))
    await ok_sub.flush()
    await bad_sub.flush()
    await asyncio.sleep(0)

    assert not bad_sub.alive
    assert registry.subscribers() == [ok_sub]
    assert broadcaster.publish_location(_sample(seconds=2)) == 1
    await asyncio.sleep(0.01)
    assert broken.closed


# ── Liveness ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_probe_prunes_silent_subscribers(registry, fake_connection):
    responsive, silent = fake_connection(), fake_connection()
    alive_sub = registry.register(responsive, SubscriberRole.PASSENGER)
    silent_sub = registry.register(silent, SubscriberRole.DRIVER)

    assert await registry.probe() == 0
    await alive_sub.flush()
    await silent_sub.flush()
    assert responsive.of_type("ping") and silent.of_type("ping")

    alive_sub.mark_alive()
    assert await registry.probe() == 1

    assert registry.subscribers() == [alive_sub]
    assert silent.closed
    assert registry.stats() == {
        "total": 1,
        "drivers": 0,
        "passengers": 1,
        "dropped_messages": 0,
    }


@pytest.mark.asyncio
async def test_heartbeat_loop_runs_probe(fake_connection):
    registry = SubscriberRegistry(heartbeat_interval=0.01)
    conn = fake_connection()
    registry.register(conn, SubscriberRole.PASSENGER)
    await registry.start()

    await asyncio.sleep(0.1)
    await registry.close()

    # first round pings, second round prunes (no pong)
    assert conn.of_type("ping")
    assert conn.closed
    assert registry.subscribers() == []


@pytest.mark.asyncio
async def test_close_stops_everything(fake_connection):
    registry = SubscriberRegistry(heartbeat_interval=3600)
    await registry.start()
    subs = [registry.register(fake_connection(), SubscriberRole.PASSENGER) for _ in range(3)]

    await registry.close()

    assert registry.subscribers() == []
    assert not any(s.alive for s in subs)
    assert not subs[0].offer({"type": "ping"})


@pytest.mark.asyncio
async def test_ping_dropped_on_full_queue_does_not_prune(fake_connection):
    registry = SubscriberRegistry(heartbeat_interval=3600, queue_size=1)
    conn = fake_connection(lag=0.05)
    sub = registry.register(conn, SubscriberRole.PASSENGER)
    assert sub.offer({"type": "ride_status_changed"})

    assert await registry.probe() == 0
    assert not sub.awaiting_pong
    assert sub.dropped == 1

    assert await registry.probe() == 0
    assert registry.subscribers() == [sub]
    await registry.close()
