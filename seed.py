"""
Seed script -- loads demo riders and drivers around Taipei Main Station.

Run after migrations:
    python seed.py

Creates:
  - 6 riders, four of them with a shared location
  - 8 drivers: 6 idle, 1 offline, 1 idle without a position yet
"""

import asyncio

from sqlalchemy import func, select

from src.config import settings
from src.domain.clock import utcnow
from src.domain.enums import DriverStatus
from src.domain.matching import cell_for
from src.infrastructure.database import async_session_factory, engine
from src.infrastructure.models import DriverModel, RiderModel

STATION_LAT, STATION_LNG = 25.0478, 121.5170


RIDERS = [
    {"name": "Lin Yu-ting", "phone": "0912000001", "lat": 25.0478, "lng": 121.5170},
    {"name": "Chen Wei", "phone": "0912000002", "lat": 25.0330, "lng": 121.5654},  # Taipei 101
    {"name": "Wang Hsin-yi", "phone": "0912000003", "lat": 25.0418, "lng": 121.5079},  # Ximending
    {"name": "Huang Po-han", "phone": "0912000004", "lat": 25.0634, "lng": 121.5522},
    {"name": "Chang Mei-ling", "phone": "0912000005", "lat": None, "lng": None},
    {"name": "Liu Chia-hao", "phone": "0912000006", "lat": None, "lng": None},
]

DRIVERS = [
    {"name": "Tsai Ming", "status": DriverStatus.IDLE, "lat": 25.0490, "lng": 121.5180, "rating": 4.9},
    {"name": "Kuo Jen", "status": DriverStatus.IDLE, "lat": 25.0465, "lng": 121.5150, "rating": 4.7},
    {"name": "Hsu An", "status": DriverStatus.IDLE, "lat": 25.0340, "lng": 121.5640, "rating": 4.8},
    {"name": "Yang Kai", "status": DriverStatus.IDLE, "lat": 25.0420, "lng": 121.5090, "rating": 4.6},
    {"name": "Lee Shu", "status": DriverStatus.IDLE, "lat": 25.0600, "lng": 121.5500, "rating": 4.5},
    {"name": "Wu Tien", "status": DriverStatus.IDLE, "lat": 25.0800, "lng": 121.5300, "rating": 4.9},
    {"name": "Cheng Hao", "status": DriverStatus.OFFLINE, "lat": 25.0470, "lng": 121.5160, "rating": 4.4},
    {"name": "Lai Ting", "status": DriverStatus.IDLE, "lat": None, "lng": None, "rating": 5.0},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        existing = await session.scalar(select(func.count()).select_from(RiderModel))
        if existing:
            print("Database already seeded. Skipping.")
            return

        now = utcnow()

        # ── Riders ────────────────────────────────────────────────────
        for r in RIDERS:
            session.add(
                RiderModel(
                    name=r["name"],
                    phone=r["phone"],
                    current_lat=r["lat"],
                    current_lng=r["lng"],
                    location_updated_at=now if r["lat"] is not None else None,
                )
            )
        await session.flush()
        print(f"  Created {len(RIDERS)} riders")

        # ── Drivers ───────────────────────────────────────────────────
        for d in DRIVERS:
            located = d["lat"] is not None
            session.add(
                DriverModel(
                    name=d["name"],
                    status=d["status"],
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                    h3_cell=cell_for(d["lat"], d["lng"], settings.h3_resolution) if located else None,
                    location_updated_at=now if located else None,
                    rating=d["rating"],
                )
            )
        await session.flush()
        print(f"  Created {len(DRIVERS)} drivers")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
