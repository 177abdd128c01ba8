"""Huey task queue definitions for driving the control loop from a worker.

Run either this worker or the API's built-in ticker (``API_RUN_TICKER``).
The API still serves operator calls; experiment leases in the shared
database keep it and this worker off the same experiment at once.
"""

from __future__ import annotations

import asyncio

import structlog
from huey import SqliteHuey, crontab

from skuld.config import Settings

logger = structlog.get_logger()

_settings = Settings()
_settings.ensure_data_dir()

huey = SqliteHuey(
    name="skuld",
    filename=str(_settings.huey_db_path),
    immediate=_settings.huey_immediate,
)


async def _tick_once(settings: Settings) -> int:
    from skuld.wiring import build_controller, open_database

    db = open_database(settings)
    controller = build_controller(settings, db)
    try:
        return await controller.tick()
    finally:
        await controller.close()
        db.close()


@huey.task()  # type: ignore[untyped-decorator]
def tick_task() -> int:
    """Run one lifecycle tick. Returns the number of experiments serviced."""
    return asyncio.run(_tick_once(Settings()))


@huey.periodic_task(crontab(minute="*"))  # type: ignore[untyped-decorator]
@huey.lock_task("lifecycle-tick-lock")  # type: ignore[untyped-decorator]
def periodic_tick() -> int:
    """Run the lifecycle tick every minute.

    Uses lock_task so two workers never scan at the same time.
    """
    logger.info("Periodic lifecycle tick triggered")
    return asyncio.run(_tick_once(Settings()))
