"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from skuld.config import Settings
from skuld.db import Database
from skuld.lifecycle import InMemoryLifecycleRepository, LifecycleController
from skuld.models import (
    BusinessImpact,
    Experiment,
    ExperimentAnalytics,
    ExperimentMetrics,
    ExperimentReport,
    StatisticalAnalysis,
    Winner,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from skuld.models import AuditEntry, FlagUpdate, NotificationConfig, NotificationEvent

# Wednesday, inside business hours
T0 = datetime(2026, 10, 14, 12, 0, tzinfo=UTC)
EXPERIMENT_ID = "exp_1"


class FakeClock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeStore:
    """In-memory experiment/flag service.

    ``fail_on`` maps a method name to the exception that method raises. Set
    ``flag_gate`` to an unset ``asyncio.Event`` to hold ``update_flag`` after
    the call is recorded.
    """

    def __init__(self) -> None:
        self.experiments: dict[str, Experiment] = {}
        self.calls: list[tuple[Any, ...]] = []
        self.flag_updates: list[tuple[str, FlagUpdate]] = []
        self.fail_on: dict[str, Exception] = {}
        self.flag_gate: asyncio.Event | None = None

    def add(self, experiment_id: str) -> Experiment:
        experiment = Experiment(
            id=experiment_id, name=f"Experiment {experiment_id}", flag_id=f"flag_{experiment_id}"
        )
        self.experiments[experiment_id] = experiment
        return experiment

    def _call(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        exc = self.fail_on.get(name)
        if exc is not None:
            raise exc

    def called(self, name: str) -> list[tuple[Any, ...]]:
        return [c for c in self.calls if c[0] == name]

    async def get_experiment(self, experiment_id: str) -> Experiment | None:
        self._call("get_experiment", experiment_id)
        return self.experiments.get(experiment_id)

    async def start_experiment(self, experiment_id: str, actor: str) -> None:
        self._call("start_experiment", experiment_id, actor)

    async def pause_experiment(self, experiment_id: str, actor: str, reason: str) -> None:
        self._call("pause_experiment", experiment_id, actor, reason)

    async def complete_experiment(self, experiment_id: str, actor: str) -> None:
        self._call("complete_experiment", experiment_id, actor)

    async def update_flag(self, flag_id: str, update: FlagUpdate, actor: str, reason: str) -> None:
        self._call("update_flag", flag_id, update, actor, reason)
        if self.flag_gate is not None:
            await self.flag_gate.wait()
        self.flag_updates.append((flag_id, update))


class FakeAnalytics:
    """Analytics engine returning whatever snapshot the test configured.

    Set ``gate`` to an unset ``asyncio.Event`` to hold ``analyze_experiment``
    until the test releases it.
    """

    def __init__(self) -> None:
        self.snapshots: dict[str, ExperimentAnalytics] = {}
        self.calls: list[str] = []
        self.error: Exception | None = None
        self.failing: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.report_summary = "Variant B wins"

    def set(
        self,
        experiment_id: str = EXPERIMENT_ID,
        *,
        conversion_rate: float = 0.05,
        participants: int = 1000,
        error_rate: float = 0.01,
        response_time: float = 200.0,
        roi: float = 0.0,
        revenue_impact: float = 0.0,
        winner: str | None = None,
        confidence: float = 0.95,
    ) -> ExperimentAnalytics:
        snapshot = ExperimentAnalytics(
            experiment_id=experiment_id,
            metrics=ExperimentMetrics(
                overall_conversion_rate=conversion_rate,
                total_participants=participants,
                error_rate=error_rate,
                response_time=response_time,
            ),
            business_impact=BusinessImpact(roi=roi, revenue_impact=revenue_impact),
            statistical_analysis=StatisticalAnalysis(
                winner=Winner(variant_name=winner, confidence=confidence) if winner else None
            ),
        )
        self.snapshots[experiment_id] = snapshot
        return snapshot

    async def analyze_experiment(self, experiment_id: str) -> ExperimentAnalytics:
        self.calls.append(experiment_id)
        if self.gate is not None:
            await self.gate.wait()
        exc = self.failing.get(experiment_id) or self.error
        if exc is not None:
            raise exc
        return self.snapshots.get(experiment_id) or self.set(experiment_id)

    async def generate_experiment_report(self, experiment_id: str) -> ExperimentReport:
        return ExperimentReport(experiment_id=experiment_id, executive_summary=self.report_summary)


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, NotificationEvent, dict[str, Any]]] = []

    async def send(
        self,
        experiment_id: str,
        event: NotificationEvent,
        data: dict[str, Any],
        config: NotificationConfig,
    ) -> None:
        self.sent.append((experiment_id, event, data))

    def events(self) -> list[str]:
        return [event.value for _, event, _ in self.sent]


class RecordingAudit:
    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def log_change(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    def actions(self) -> list[str]:
        return [e.action for e in self.entries]


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        experiment_service_url="",
        analytics_service_url="",
        slack_webhook_url="",
        notification_webhook_url="",
        data_dir=tmp_path / "data",
        tick_interval_seconds=0.01,
        analytics_timeout_seconds=1.0,
        store_timeout_seconds=1.0,
        lease_wait_seconds=5.0,
        lease_poll_seconds=0.01,
        api_run_ticker=False,
        log_level="DEBUG",
        log_format="console",
        _env_file=None,
    )


@pytest.fixture()
def db(tmp_path: Path) -> Iterator[Database]:
    db = Database(tmp_path / "test.db")
    db.init_schema()
    yield db
    db.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store() -> FakeStore:
    store = FakeStore()
    store.add(EXPERIMENT_ID)
    return store


@pytest.fixture()
def analytics() -> FakeAnalytics:
    return FakeAnalytics()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def audit() -> RecordingAudit:
    return RecordingAudit()


@pytest.fixture()
def repository() -> InMemoryLifecycleRepository:
    return InMemoryLifecycleRepository()


@pytest.fixture()
async def controller(
    repository: InMemoryLifecycleRepository,
    store: FakeStore,
    analytics: FakeAnalytics,
    notifier: RecordingNotifier,
    audit: RecordingAudit,
    settings: Settings,
    clock: FakeClock,
) -> AsyncIterator[LifecycleController]:
    controller = LifecycleController(
        repository,
        store,
        analytics,
        audit=audit,
        notifier=notifier,
        settings=settings,
        clock=clock,
    )
    yield controller
    await controller.close()


NOTIFY_ALL: dict[str, Any] = {
    "enabled": True,
    "channels": ["in_app"],
    "events": [
        "started",
        "paused",
        "completed",
        "rolled_back",
        "milestone_reached",
        "alert",
    ],
}
