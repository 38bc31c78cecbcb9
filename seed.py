"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 12 sample drivers (bike / auto / car, spread around Mumbai airport)
  - 3 sample promo codes
  - 3 sample ride requests (searching, scheduled and completed)
"""

import asyncio
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from ridedispatch.config import settings
from ridedispatch.domain.enums import DiscountType, RequestStatus, VehicleClass
from ridedispatch.infrastructure.database import async_session_factory, engine
from ridedispatch.infrastructure.models import (
    DriverModel,
    PromoCodeModel,
    RideRequestModel,
)
from ridedispatch.infrastructure.repositories import DriverRepository

# Mumbai airport coordinates (approx)
AIRPORT_LAT, AIRPORT_LNG = 19.0896, 72.8656


DRIVERS = [
    # Cars near the airport
    {"name": "Aarav Sharma", "class": VehicleClass.CAR, "info": "Swift Dzire MH02AB1234", "rating": 4.8, "lat": 19.0900, "lng": 72.8660},
    {"name": "Priya Patel", "class": VehicleClass.CAR, "info": "Honda City MH02CD5678", "rating": 4.9, "lat": 19.0880, "lng": 72.8640},
    {"name": "Rohan Mehta", "class": VehicleClass.CAR, "info": "Toyota Etios MH04EF9012", "rating": 4.5, "lat": 19.0930, "lng": 72.8690},
    {"name": "Sneha Gupta", "class": VehicleClass.CAR, "info": "Hyundai Aura MH01GH3456", "rating": 4.7, "lat": 19.1050, "lng": 72.8800},
    # Autos
    {"name": "Vikram Singh", "class": VehicleClass.AUTO, "info": "Bajaj RE MH02JK7890", "rating": 4.6, "lat": 19.0905, "lng": 72.8665},
    {"name": "Ananya Reddy", "class": VehicleClass.AUTO, "info": "Piaggio Ape MH02LM1122", "rating": 4.9, "lat": 19.0870, "lng": 72.8630},
    {"name": "Karan Joshi", "class": VehicleClass.AUTO, "info": "Bajaj RE MH03NP3344", "rating": 4.3, "lat": 19.0760, "lng": 72.8777},
    # Bikes
    {"name": "Meera Nair", "class": VehicleClass.BIKE, "info": "Honda Activa MH02QR5566", "rating": 4.8, "lat": 19.0915, "lng": 72.8675},
    {"name": "Arjun Kumar", "class": VehicleClass.BIKE, "info": "TVS Jupiter MH02ST7788", "rating": 4.4, "lat": 19.0875, "lng": 72.8635},
    {"name": "Diya Iyer", "class": VehicleClass.BIKE, "info": "Hero Splendor MH04UV9900", "rating": 4.7, "lat": 19.1176, "lng": 72.9060},
    # Corporate fleet
    {"name": "Kabir Desai", "class": VehicleClass.CAR, "info": "Innova Crysta MH02WX2468", "rating": 4.9, "lat": 19.0895, "lng": 72.8655, "org": "acme"},
    {"name": "Isha Kapoor", "class": VehicleClass.CAR, "info": "Ertiga MH02YZ1357", "rating": 4.6, "lat": 19.0940, "lng": 72.8700, "org": "acme"},
]

PROMOS = [
    {"code": "WELCOME50", "type": DiscountType.PERCENTAGE, "value": 50, "max": 100.0, "min": 0.0, "classes": ""},
    {"code": "FLAT30", "type": DiscountType.FIXED, "value": 30, "max": None, "min": 150.0, "classes": ""},
    {"code": "BIKE20", "type": DiscountType.PERCENTAGE, "value": 20, "max": 40.0, "min": 0.0, "classes": "bike"},
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM drivers"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        now = datetime.now(timezone.utc)

        # ── Drivers ───────────────────────────────────────────────────
        repo = DriverRepository(session, settings.h3_resolution)
        driver_models = []
        for d in DRIVERS:
            m = await repo.create(
                DriverModel(
                    name=d["name"],
                    rating=d["rating"],
                    vehicle_class=d["class"],
                    vehicle_info=d["info"],
                    organization=d.get("org"),
                    is_online=True,
                    is_available=True,
                    current_lat=d["lat"],
                    current_lng=d["lng"],
                    location_updated_at=now,
                )
            )
            driver_models.append(m)
        print(f"  Created {len(driver_models)} drivers")

        # ── Promo codes ───────────────────────────────────────────────
        for p in PROMOS:
            session.add(
                PromoCodeModel(
                    code=p["code"],
                    discount_type=p["type"],
                    discount_value=p["value"],
                    max_discount=p["max"],
                    min_amount=p["min"],
                    valid_from=now - timedelta(days=1),
                    valid_until=now + timedelta(days=90),
                    applicable_vehicle_classes=p["classes"],
                )
            )
        await session.flush()
        print(f"  Created {len(PROMOS)} promo codes")

        # ── Ride requests ─────────────────────────────────────────────
        timeout = timedelta(minutes=settings.request_timeout_minutes)
        scheduled = now + timedelta(hours=2)
        requests_data = [
            {
                "passenger_id": 1,
                "pickup": (AIRPORT_LAT, AIRPORT_LNG, "Mumbai Airport T2"),
                "drop": (19.0760, 72.8777, "Andheri"),
                "class": VehicleClass.CAR,
                "fare": 180.0,
                "status": RequestStatus.SEARCHING,
                "timeout_at": now + timeout,
                "scheduled_time": None,
            },
            {
                "passenger_id": 2,
                "pickup": (AIRPORT_LAT, AIRPORT_LNG, "Mumbai Airport T2"),
                "drop": (19.1176, 72.9060, "Powai"),
                "class": VehicleClass.AUTO,
                "fare": 150.0,
                "status": RequestStatus.PENDING,
                "timeout_at": scheduled + timeout,
                "scheduled_time": scheduled,
            },
            {
                "passenger_id": 3,
                "pickup": (AIRPORT_LAT, AIRPORT_LNG, "Mumbai Airport T2"),
                "drop": (19.0200, 72.8500, "Dadar"),
                "class": VehicleClass.CAR,
                "fare": 265.0,
                "status": RequestStatus.COMPLETED,
                "timeout_at": now - timedelta(hours=1),
                "scheduled_time": None,
            },
        ]
        for r in requests_data:
            session.add(
                RideRequestModel(
                    passenger_id=r["passenger_id"],
                    pickup_lat=r["pickup"][0],
                    pickup_lng=r["pickup"][1],
                    pickup_label=r["pickup"][2],
                    drop_lat=r["drop"][0],
                    drop_lng=r["drop"][1],
                    drop_label=r["drop"][2],
                    vehicle_class=r["class"],
                    fare=r["fare"],
                    status=r["status"],
                    search_radius_m=settings.initial_search_radius_m,
                    timeout_at=r["timeout_at"],
                    scheduled_time=r["scheduled_time"],
                    matched_driver_id=(
                        driver_models[1].id
                        if r["status"] == RequestStatus.COMPLETED
                        else None
                    ),
                )
            )
        await session.flush()
        print(f"  Created {len(requests_data)} ride requests")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
