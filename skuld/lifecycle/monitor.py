"""Per-experiment serialization and one-shot deferred-start timers."""

from __future__ import annotations

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from skuld.errors import ExperimentBusyError
from skuld.models.base import new_id

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable
    from datetime import datetime

    from skuld.protocols import LifecycleRepository

logger = structlog.get_logger()


class ExperimentLocks:
    """One ``asyncio.Lock`` per experiment, created on first use."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, experiment_id: str) -> asyncio.Lock:
        lock = self._locks.get(experiment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[experiment_id] = lock
        return lock

    def is_busy(self, experiment_id: str) -> bool:
        lock = self._locks.get(experiment_id)
        return lock is not None and lock.locked()


class ExperimentGuard:
    """Exclusive access to one experiment.

    The asyncio lock serializes coroutines in this process; the repository
    lease serializes processes that share the repository (API and worker).
    """

    def __init__(
        self,
        repository: LifecycleRepository,
        holder: str,
        *,
        ttl_seconds: float,
        wait_seconds: float,
        poll_seconds: float,
    ) -> None:
        self.holder = holder
        self._repository = repository
        self._locks = ExperimentLocks()
        self._ttl = ttl_seconds
        self._wait = wait_seconds
        self._poll = poll_seconds

    def is_busy(self, experiment_id: str) -> bool:
        return self._locks.is_busy(experiment_id)

    @contextlib.asynccontextmanager
    async def hold(self, experiment_id: str, *, wait: bool = True) -> AsyncIterator[None]:
        """Hold the experiment until the block exits.

        Raises ExperimentBusyError if another worker keeps the lease past the
        wait budget (immediately when *wait* is False).
        """
        async with self._locks.get(experiment_id):
            await self._acquire(experiment_id, wait)
            try:
                yield
            finally:
                self._repository.release_lease(experiment_id, self.holder)

    async def _acquire(self, experiment_id: str, wait: bool) -> None:
        deadline = time.monotonic() + (self._wait if wait else 0.0)
        while not self._repository.acquire_lease(experiment_id, self.holder, self._ttl):
            if time.monotonic() >= deadline:
                raise ExperimentBusyError(experiment_id)
            logger.debug("Waiting for experiment lease", experiment_id=experiment_id)
            await asyncio.sleep(self._poll)


@dataclass
class _PendingStart:
    token: str
    fire_at: datetime
    task: asyncio.Task[None]


class DeferredStarts:
    """Armed start timers, at most one per experiment.

    Each timer carries a token. A timer that wakes up after it was cancelled
    or replaced finds a different token (or none) and does nothing.
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock
        self._pending: dict[str, _PendingStart] = {}

    def arm(
        self,
        experiment_id: str,
        fire_at: datetime,
        callback: Callable[[str], Awaitable[None]],
    ) -> str:
        self.cancel(experiment_id)
        token = new_id("timer")
        delay = max(0.0, (fire_at - self._clock()).total_seconds())
        task = asyncio.get_running_loop().create_task(
            self._fire(experiment_id, token, delay, callback),
            name=f"deferred-start-{experiment_id}",
        )
        self._pending[experiment_id] = _PendingStart(token=token, fire_at=fire_at, task=task)
        logger.info(
            "Deferred start armed",
            experiment_id=experiment_id,
            fire_at=fire_at.isoformat(),
            delay_seconds=round(delay, 1),
        )
        return token

    async def _fire(
        self,
        experiment_id: str,
        token: str,
        delay: float,
        callback: Callable[[str], Awaitable[None]],
    ) -> None:
        await asyncio.sleep(delay)
        pending = self._pending.get(experiment_id)
        if pending is None or pending.token != token:
            return
        del self._pending[experiment_id]
        await callback(experiment_id)

    def cancel(self, experiment_id: str) -> bool:
        pending = self._pending.pop(experiment_id, None)
        if pending is None:
            return False
        if pending.task is not asyncio.current_task():
            pending.task.cancel()
        logger.info("Deferred start cancelled", experiment_id=experiment_id)
        return True

    def is_armed(self, experiment_id: str) -> bool:
        return experiment_id in self._pending

    def fire_at(self, experiment_id: str) -> datetime | None:
        pending = self._pending.get(experiment_id)
        return pending.fire_at if pending else None

    async def close(self) -> None:
        tasks = [pending.task for pending in self._pending.values()]
        self._pending.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
