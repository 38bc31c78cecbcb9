"""
Integration tests for the REST API endpoints.

Runs the real app against an in-memory SQLite database.  Redis is replaced
by an ``AsyncMock`` and routing uses the straight-line fallback, so no
external service is needed.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from ridedispatch.domain.enums import DiscountType
from ridedispatch.infrastructure.models import PromoCodeModel
from ridedispatch.infrastructure.notifications import Notification, NotificationSink
from ridedispatch.infrastructure.live_channel import LiveLocationSession
from ridedispatch.services.navigation import NavigationService
from ridedispatch.services.tracking import TripTracker

RIDE_BODY = {
    "passenger_id": 1,
    "pickup": {"lat": 19.0896, "lng": 72.8656},
    "drop": {"lat": 19.1176, "lng": 72.8490},
    "pickup_label": "Mumbai Airport T2",
    "drop_label": "Andheri",
    "vehicle_class": "car",
    "fare": 180.0,
}


class RecordingSink(NotificationSink):
    def __init__(self):
        self.sent: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.sent.append(notification)


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, make_driver):
    """AsyncClient backed by SQLite + a Redis-less live channel."""
    # Seed
    await make_driver(rating=4.8)
    async with session_factory() as session:
        session.add(
            PromoCodeModel(
                code="FLAT30",
                discount_type=DiscountType.FIXED,
                discount_value=30,
            )
        )
        await session.commit()

    with (
        patch(
            "ridedispatch.workers.matcher.start_matching_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ridedispatch.workers.matcher.stop_matching_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ridedispatch.workers.expiry.start_expiry_loop",
            new_callable=AsyncMock,
        ),
        patch(
            "ridedispatch.workers.expiry.stop_expiry_loop",
            new_callable=AsyncMock,
        ),
    ):
        # DB session dependency
        async def _test_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except Exception:
                    await session.rollback()
                    raise

        from ridedispatch.api.app import create_app
        from ridedispatch.api.dependencies import get_db
        from ridedispatch.api.middleware import limiter

        limiter.reset()
        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        app.state.live_session = LiveLocationSession(AsyncMock())
        app.state.notifier = RecordingSink()
        app.state.tracker = TripTracker(app.state.live_session, app.state.notifier)
        app.state.navigation = NavigationService()

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            ac.app = app
            yield ac


async def create_ride(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json={**RIDE_BODY, **overrides})
    assert resp.status_code == 202, resp.text
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_ride_returns_202(client: AsyncClient):
    data = await create_ride(client)
    assert data["status"] == "searching"
    assert data["search_radius_m"] == 5000
    assert data["id"] is not None


@pytest.mark.asyncio
async def test_create_scheduled_ride_is_pending(client: AsyncClient):
    when = (datetime.now(timezone.utc) + timedelta(hours=2)).isoformat()
    data = await create_ride(client, scheduled_time=when)
    assert data["status"] == "pending"


@pytest.mark.asyncio
async def test_create_ride_rejects_bad_coordinates(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides", json={**RIDE_BODY, "pickup": {"lat": 120, "lng": 72.8}}
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_ride(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.get(f"/api/v1/rides/{ride_id}")
    assert resp.status_code == 200
    assert resp.json()["id"] == ride_id


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_active_ride_for_passenger(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.get("/api/v1/rides/active", params={"passenger_id": 1})
    assert resp.status_code == 200
    assert resp.json()["id"] == ride_id

    resp = await client.get("/api/v1/rides/active", params={"passenger_id": 2})
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_cancel_requires_reason(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.patch(f"/api/v1/rides/{ride_id}/cancel", json={"reason": ""})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_cancel_searching_ride(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.patch(
        f"/api/v1/rides/{ride_id}/cancel", json={"reason": "Changed plans"}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancellation_reason"] == "Changed plans"


@pytest.mark.asyncio
async def test_cancel_already_cancelled_ride_fails(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    body = {"reason": "Changed plans"}
    await client.patch(f"/api/v1/rides/{ride_id}/cancel", json=body)
    resp = await client.patch(f"/api/v1/rides/{ride_id}/cancel", json=body)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_match_accept_complete_flow(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]

    resp = await client.post(f"/api/v1/rides/{ride_id}/match")
    assert resp.status_code == 200
    match = resp.json()
    assert match["matched"] is True
    driver_id = match["ride"]["matched_driver_id"]
    assert client.app.state.tracker.is_watching(ride_id)

    resp = await client.patch(
        f"/api/v1/rides/{ride_id}/accept", json={"driver_id": driver_id}
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    resp = await client.patch(f"/api/v1/rides/{ride_id}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert not client.app.state.tracker.is_watching(ride_id)


@pytest.mark.asyncio
async def test_accept_before_match_conflicts(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.patch(f"/api/v1/rides/{ride_id}/accept", json={"driver_id": 1})
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_estimate_fare(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides/estimate",
        json={
            "vehicle_class": "car",
            "pickup": RIDE_BODY["pickup"],
            "drop": RIDE_BODY["drop"],
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["currency"] == "INR"
    assert data["total_fare"] >= 80
    assert 3 < data["distance_km"] < 5
    assert data["eta_minutes"] >= 1


@pytest.mark.asyncio
async def test_estimate_with_promo(client: AsyncClient):
    body = {
        "vehicle_class": "car",
        "pickup": RIDE_BODY["pickup"],
        "drop": RIDE_BODY["drop"],
    }
    plain = (await client.post("/api/v1/rides/estimate", json=body)).json()
    promo = (
        await client.post("/api/v1/rides/estimate", json={**body, "promo_code": "flat30"})
    ).json()
    assert promo["discount"] == 30
    assert promo["promo_code"] == "FLAT30"
    assert promo["total_fare"] == pytest.approx(plain["total_fare"] - 30)


@pytest.mark.asyncio
async def test_estimate_unknown_promo(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides/estimate",
        json={
            "vehicle_class": "car",
            "pickup": RIDE_BODY["pickup"],
            "drop": RIDE_BODY["drop"],
            "promo_code": "NOPE",
        },
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_nearby_drivers(client: AsyncClient):
    resp = await client.get(
        "/api/v1/drivers/nearby", params={"lat": 19.0896, "lng": 72.8656}
    )
    assert resp.status_code == 200
    assert len(resp.json()) == 1
    assert resp.json()[0]["rating"] == 4.8


@pytest.mark.asyncio
async def test_availability_toggle(client: AsyncClient):
    resp = await client.patch(
        "/api/v1/drivers/1/availability",
        json={"is_online": False, "is_available": False},
    )
    assert resp.status_code == 200
    assert resp.json()["is_online"] is False

    resp = await client.get(
        "/api/v1/drivers/nearby", params={"lat": 19.0896, "lng": 72.8656}
    )
    assert resp.json() == []


@pytest.mark.asyncio
async def test_location_push_moves_driver(client: AsyncClient):
    ts = datetime.now(timezone.utc)
    resp = await client.post(
        "/api/v1/drivers/1/location",
        json={"lat": 19.1176, "lng": 72.8490, "timestamp": ts.isoformat()},
    )
    assert resp.status_code == 202
    assert resp.json()["accepted"] is True
    client.app.state.live_session.redis.publish.assert_awaited()

    # an older sample is stored but does not move the driver back
    stale = (ts - timedelta(seconds=30)).isoformat()
    resp = await client.post(
        "/api/v1/drivers/1/location",
        json={"lat": 19.0896, "lng": 72.8656, "timestamp": stale},
    )
    assert resp.json()["accepted"] is False

    resp = await client.get(
        "/api/v1/drivers/nearby",
        params={"lat": 19.1176, "lng": 72.8490, "radius_m": 1000},
    )
    assert [d["driver_id"] for d in resp.json()] == [1]


@pytest.mark.asyncio
async def test_trip_location_drives_proximity_alerts(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    await client.post(f"/api/v1/rides/{ride_id}/match")

    resp = await client.post(
        "/api/v1/drivers/1/location",
        json={
            "lat": 19.0897,
            "lng": 72.8656,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "trip_id": ride_id,
        },
    )
    assert resp.status_code == 202
    assert resp.json()["delivered"] is True

    sent = client.app.state.notifier.sent
    assert {n.recipient for n in sent} == {"passenger:1", "driver:1"}
    assert all(n.metadata["level"] == "arrived" for n in sent)

    resp = await client.get(f"/api/v1/rides/{ride_id}/location")
    assert resp.status_code == 200
    assert resp.json()["trip_id"] == ride_id


@pytest.mark.asyncio
async def test_location_push_for_foreign_trip_rejected(client: AsyncClient):
    ride_id = (await create_ride(client))["id"]
    resp = await client.post(
        "/api/v1/drivers/1/location",
        json={
            "lat": 19.0897,
            "lng": 72.8656,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "trip_id": ride_id,
        },
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_navigation_route(client: AsyncClient):
    resp = await client.post(
        "/api/v1/navigation/route",
        json={"start": RIDE_BODY["pickup"], "end": RIDE_BODY["drop"]},
    )
    assert resp.status_code == 200
    route = resp.json()
    assert route["synthetic"] is True
    assert [i["type"] for i in route["instructions"]] == ["depart", "destination"]


@pytest.mark.asyncio
async def test_navigation_reroute(client: AsyncClient):
    route = (
        await client.post(
            "/api/v1/navigation/route",
            json={"start": RIDE_BODY["pickup"], "end": RIDE_BODY["drop"]},
        )
    ).json()

    on_route = await client.post(
        "/api/v1/navigation/reroute",
        json={"current": RIDE_BODY["pickup"], "destination": RIDE_BODY["drop"], "route": route},
    )
    assert on_route.json() == {"off_route": False, "route": None}

    off_route = await client.post(
        "/api/v1/navigation/reroute",
        json={
            "current": {"lat": 19.0896, "lng": 72.8800},
            "destination": RIDE_BODY["drop"],
            "route": route,
        },
    )
    assert off_route.json()["off_route"] is True
    assert off_route.json()["route"]["geometry"][0] == {"lat": 19.0896, "lng": 72.88}


@pytest.mark.asyncio
async def test_current_instruction(client: AsyncClient):
    route = (
        await client.post(
            "/api/v1/navigation/route",
            json={"start": RIDE_BODY["pickup"], "end": RIDE_BODY["drop"]},
        )
    ).json()
    resp = await client.post(
        "/api/v1/navigation/current-instruction",
        json={"current": RIDE_BODY["pickup"], "instructions": route["instructions"]},
    )
    data = resp.json()
    assert data["current"]["type"] == "depart"
    assert data["next"]["type"] == "destination"
    assert data["spoken"] == "Start your journey"


@pytest.mark.asyncio
async def test_expire_sweep_endpoint(client: AsyncClient):
    resp = await client.post("/api/v1/admin/expire-sweep")
    assert resp.status_code == 200
    assert resp.json() == {"expired": 0, "activated": 0}


@pytest.mark.asyncio
async def test_ride_with_promo_rejects_inflated_discount(client: AsyncClient):
    ride = await create_ride(client, promo_code="flat30", discount_amount=30.0)
    assert ride["promo_code"] == "FLAT30"

    inflated = {"passenger_id": 2, "promo_code": "FLAT30", "discount_amount": 500.0}
    resp = await client.post("/api/v1/rides", json={**RIDE_BODY, **inflated})
    assert resp.status_code == 422


# ── Lifespan ──────────────────────────────────────────────────────────


def lifespan_app() -> FastAPI:
    app = FastAPI()
    app.state.live_session = MagicMock()
    app.state.live_session.listen = AsyncMock(side_effect=RuntimeError("listener died"))
    app.state.tracker = MagicMock()
    app.state.notifier = MagicMock(drain=AsyncMock())
    app.state.navigation = MagicMock(aclose=AsyncMock())
    return app


@pytest.mark.asyncio
async def test_shutdown_runs_after_listener_failure():
    from ridedispatch.api.app import lifespan

    app = lifespan_app()
    with (
        patch("ridedispatch.workers.matcher.start_matching_loop", new_callable=AsyncMock),
        patch(
            "ridedispatch.workers.matcher.stop_matching_loop", new_callable=AsyncMock
        ) as stop_matching,
        patch("ridedispatch.workers.expiry.start_expiry_loop", new_callable=AsyncMock),
        patch(
            "ridedispatch.workers.expiry.stop_expiry_loop", new_callable=AsyncMock
        ) as stop_expiry,
    ):
        async with lifespan(app):
            await asyncio.sleep(0)

    stop_matching.assert_awaited_once()
    stop_expiry.assert_awaited_once()
    app.state.live_session.close.assert_called_once()
    app.state.notifier.drain.assert_awaited_once()
    app.state.navigation.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_shutdown_runs_when_serving_raises():
    from ridedispatch.api.app import lifespan

    app = lifespan_app()
    with (
        patch("ridedispatch.workers.matcher.start_matching_loop", new_callable=AsyncMock),
        patch(
            "ridedispatch.workers.matcher.stop_matching_loop", new_callable=AsyncMock
        ) as stop_matching,
        patch("ridedispatch.workers.expiry.start_expiry_loop", new_callable=AsyncMock),
        patch("ridedispatch.workers.expiry.stop_expiry_loop", new_callable=AsyncMock),
    ):
        with pytest.raises(ValueError):
            async with lifespan(app):
                raise ValueError("boom")

    stop_matching.assert_awaited_once()
    app.state.notifier.drain.assert_awaited_once()
