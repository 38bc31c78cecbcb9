"""
Background Expiry Sweeper
=========================

Every ``EXPIRY_SWEEP_INTERVAL_SECONDS``:

* expire ``searching`` requests whose timeout has passed, and
* move due scheduled (``pending``) requests into ``searching``.

Both are predicate-guarded UPDATEs, so running the sweeper from several
processes at once is safe; no lock is taken.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import async_sessionmaker

from ridedispatch.config import settings
from ridedispatch.infrastructure.database import async_session_factory
from ridedispatch.services.lifecycle import RequestLifecycleManager
from ridedispatch.workers.loop import PeriodicTask


async def run_expiry_cycle(
    session_factory: async_sessionmaker = async_session_factory,
) -> tuple[int, int]:
    """Returns ``(expired, activated)`` counts."""
    async with session_factory() as session:
        manager = RequestLifecycleManager(session)
        expired = await manager.expire_sweep()
        activated = await manager.activate_due_scheduled()
    return expired, activated


_worker = PeriodicTask(
    "Expiry sweeper", settings.expiry_sweep_interval_seconds, run_expiry_cycle
)


async def start_expiry_loop() -> None:
    await _worker.start()


async def stop_expiry_loop() -> None:
    await _worker.stop()
