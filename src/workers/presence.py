"""
Presence Sweeper
================

Runs every ``presence_sweep_interval_seconds`` (default 60 s).

An ``idle`` driver whose last location sample is older than
``driver_stale_after_seconds`` has most likely closed the app without
going offline.  Leaving them ``idle`` would let the dispatcher hand out
rides nobody answers, so the sweeper moves them to ``offline``.

Concurrency safety
------------------
* **Redis distributed lock** -- one sweep at a time across API processes.
* **Conditional update** (``idle -> offline`` only if still idle) -- a
  dispatch that reserves the driver mid-sweep wins; the sweep skips them.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.domain.clock import utcnow
from src.domain.enums import DriverStatus
from src.infrastructure.database import async_session_factory
from src.infrastructure.locks import DistributedLock, LockNotAcquired
from src.infrastructure.redis_client import close_redis, get_redis
from src.infrastructure.repositories import DriverRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_presence_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Presence sweeper started (interval=%ds, stale after %ds)",
        settings.presence_sweep_interval_seconds,
        settings.driver_stale_after_seconds,
    )


async def stop_presence_loop() -> None:
    global _task
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
        _task = None
    await close_redis()
    logger.info("Presence sweeper stopped")


async def sweep_stale_drivers(
    session: AsyncSession,
    stale_after: timedelta,
    now: Optional[datetime] = None,
) -> list[int]:
    """Take stale idle drivers offline; returns the ids actually changed."""
    cutoff = (now or utcnow()) - stale_after
    repo = DriverRepository(session)
    swept: list[int] = []
    for driver in await repo.get_stale_idle(cutoff):
        if await repo.update_if(driver.id, DriverStatus.IDLE, DriverStatus.OFFLINE):
            swept.append(driver.id)
    return swept


async def run_presence_sweep() -> int:
    """One guarded sweep.  Returns the number of drivers taken offline."""
    redis = await get_redis()
    lock = DistributedLock(
        redis, "presence_sweeper", ttl_seconds=settings.presence_sweep_interval_seconds
    )
    try:
        async with lock, async_session_factory() as session:
            swept = await sweep_stale_drivers(
                session, timedelta(seconds=settings.driver_stale_after_seconds)
            )
            await session.commit()
    except LockNotAcquired:
        logger.debug("Sweep lock held by another worker, skipping")
        return 0

    if swept:
        logger.info("Took %d stale driver(s) offline: %s", len(swept), swept)
    return len(swept)


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_presence_sweep()
        except Exception:
            logger.exception("Unhandled error in presence sweep")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.presence_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass
