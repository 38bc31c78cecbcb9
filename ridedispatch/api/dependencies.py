"""FastAPI dependency injection helpers."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.infrastructure.database import async_session_factory
from ridedispatch.infrastructure.live_channel import LiveLocationSession
from ridedispatch.services.navigation import NavigationService
from ridedispatch.services.tracking import TripTracker


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_live_session(request: Request) -> LiveLocationSession:
    return request.app.state.live_session


def get_tracker(request: Request) -> TripTracker:
    return request.app.state.tracker


def get_navigation(request: Request) -> NavigationService:
    return request.app.state.navigation
