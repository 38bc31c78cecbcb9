"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health       -- simple health check
POST /api/v1/admin/expire-sweep -- run the expiry / scheduled-activation sweep now
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ridedispatch.api.dependencies import get_db
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import HealthResponse, SweepResponse
from ridedispatch.services.lifecycle import RequestLifecycleManager

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/expire-sweep",
    response_model=SweepResponse,
    summary="Expire overdue requests and activate due scheduled ones",
)
@limiter.limit("100/minute")
async def expire_sweep(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    manager = RequestLifecycleManager(db)
    expired = await manager.expire_sweep()
    activated = await manager.activate_due_scheduled()
    return SweepResponse(expired=expired, activated=activated)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
