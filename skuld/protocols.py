"""Port interfaces (Protocols) for the lifecycle controller's collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from skuld.models.analytics import (
        AuditEntry,
        Experiment,
        ExperimentAnalytics,
        ExperimentReport,
        FlagUpdate,
    )
    from skuld.models.config import LifecycleConfig, NotificationConfig, NotificationEvent
    from skuld.models.state import LifecycleState


@runtime_checkable
class ExperimentStorePort(Protocol):
    """Interface to the service that owns experiments and feature flags."""

    async def get_experiment(self, experiment_id: str) -> Experiment | None: ...
    async def start_experiment(self, experiment_id: str, actor: str) -> None: ...
    async def pause_experiment(self, experiment_id: str, actor: str, reason: str) -> None: ...
    async def complete_experiment(self, experiment_id: str, actor: str) -> None: ...
    async def update_flag(
        self, flag_id: str, update: FlagUpdate, actor: str, reason: str
    ) -> None: ...


@runtime_checkable
class AnalyticsPort(Protocol):
    """Interface to the analytics engine."""

    async def analyze_experiment(self, experiment_id: str) -> ExperimentAnalytics: ...
    async def generate_experiment_report(self, experiment_id: str) -> ExperimentReport: ...


@runtime_checkable
class AuditSinkPort(Protocol):
    """Fire-and-forget audit trail."""

    async def log_change(self, entry: AuditEntry) -> None: ...


@runtime_checkable
class NotifierPort(Protocol):
    """Delivers lifecycle notifications to the configured channels."""

    async def send(
        self,
        experiment_id: str,
        event: NotificationEvent,
        data: dict[str, Any],
        config: NotificationConfig,
    ) -> None: ...


@runtime_checkable
class LifecycleRepository(Protocol):
    """Persistence for lifecycle configs and states.

    Implementations return detached copies; callers save explicitly. Leases
    let several processes share one store: only the lease holder mutates an
    experiment, and an expired lease may be taken over.
    """

    def add_config(self, config: LifecycleConfig, state: LifecycleState) -> None: ...
    def save_config(self, config: LifecycleConfig) -> None: ...
    def get_config(self, config_id: str) -> LifecycleConfig | None: ...
    def get_config_for_experiment(self, experiment_id: str) -> LifecycleConfig | None: ...
    def list_configs(self) -> list[LifecycleConfig]: ...
    def get_state(self, experiment_id: str) -> LifecycleState | None: ...
    def save_state(self, state: LifecycleState) -> None: ...
    def list_states(self) -> list[LifecycleState]: ...
    def acquire_lease(self, experiment_id: str, holder: str, ttl_seconds: float) -> bool: ...
    def release_lease(self, experiment_id: str, holder: str) -> None: ...
