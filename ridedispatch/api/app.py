"""
FastAPI application factory.

* Registers routes for rides, drivers, navigation and admin.
* Maps domain errors onto HTTP status codes.
* Starts / stops the matching worker, the expiry sweeper and the live
  location listener via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridedispatch.api.middleware import limiter
from ridedispatch.api.routes import admin, drivers, navigation, rides
from ridedispatch.config import settings
from ridedispatch.domain.errors import (
    ConcurrencyConflict,
    DispatchError,
    InvalidStateTransition,
    NotFound,
    ProviderUnavailable,
    ValidationError,
)
from ridedispatch.infrastructure.live_channel import LiveLocationSession
from ridedispatch.infrastructure.notifications import RedisNotificationSink
from ridedispatch.infrastructure.redis_client import redis_client
from ridedispatch.services.navigation import NavigationService
from ridedispatch.services.tracking import TripTracker
from ridedispatch.workers import expiry as _expiry
from ridedispatch.workers import matcher as _matcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFound: 404,
    ValidationError: 422,
    InvalidStateTransition: 409,
    ConcurrencyConflict: 409,
    ProviderUnavailable: 503,
}


async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 400
    )
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start background workers on startup; stop on shutdown."""
    await _matcher.start_matching_loop()
    await _expiry.start_expiry_loop()
    listener = asyncio.create_task(app.state.live_session.listen(), name="live-listener")
    try:
        yield
    finally:
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception("Live location listener stopped with an error")
        await _expiry.stop_expiry_loop()
        await _matcher.stop_matching_loop()
        app.state.tracker.close()
        app.state.live_session.close()
        await app.state.notifier.drain()
        await app.state.navigation.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Dispatch API",
        description=(
            "Matches ride requests to nearby drivers, prices trips, streams "
            "live driver locations and raises proximity alerts for riders "
            "and drivers."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Real-time collaborators
    redis = redis_client()
    app.state.live_session = LiveLocationSession(redis)
    app.state.notifier = RedisNotificationSink(redis)
    app.state.tracker = TripTracker(app.state.live_session, app.state.notifier)
    app.state.navigation = NavigationService.from_settings(settings)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(DispatchError, dispatch_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(navigation.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
