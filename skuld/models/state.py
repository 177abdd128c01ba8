"""Runtime lifecycle state, events and alerts."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from skuld.models.base import new_id, utcnow
from skuld.models.config import AlertSeverity


class LifecycleStatus(StrEnum):
    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class TriggeredBy(StrEnum):
    SYSTEM = "system"
    USER = "user"
    SCHEDULE = "schedule"


class EventType(StrEnum):
    STARTED = "started"
    SCHEDULED_START = "scheduled_start"
    SCHEDULED_START_CANCELLED = "scheduled_start_cancelled"
    START_FAILED = "start_failed"
    PAUSED = "paused"
    PAUSE_FAILED = "pause_failed"
    COMPLETED = "completed"
    STOP_FAILED = "stop_failed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    ROLLOUT_STEP_STARTED = "rollout_step_started"
    ROLLOUT_STEP_FAILED = "rollout_step_failed"
    ROLLOUT_STEP_AWAITING_APPROVAL = "rollout_step_awaiting_approval"
    ROLLOUT_COMPLETED = "rollout_completed"
    ALERT_ACKNOWLEDGED = "alert_acknowledged"
    CONFIG_UPDATED = "config_updated"


class LifecycleEvent(BaseModel):
    """Immutable audit record of a state change or scheduling decision."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("event"))
    experiment_id: str
    type: EventType
    timestamp: datetime = Field(default_factory=utcnow)
    data: dict[str, Any] = Field(default_factory=dict)
    triggered_by: TriggeredBy = TriggeredBy.SYSTEM


class LifecycleAlert(BaseModel):
    id: str = Field(default_factory=lambda: new_id("alert"))
    severity: AlertSeverity
    message: str
    timestamp: datetime = Field(default_factory=utcnow)
    acknowledged: bool = False
    acknowledged_by: str = ""
    action_required: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class LifecycleState(BaseModel):
    """Mutable runtime record for one experiment. Only the controller writes it."""

    experiment_id: str
    status: LifecycleStatus = LifecycleStatus.DRAFT
    health: HealthStatus = HealthStatus.HEALTHY
    current_step: int = 0
    total_steps: int = 0
    metrics: dict[str, float] = Field(default_factory=dict)
    last_check: datetime | None = None
    next_check: datetime | None = None
    alerts: list[LifecycleAlert] = Field(default_factory=list)
    history: list[LifecycleEvent] = Field(default_factory=list)

    # Controller bookkeeping
    started_at: datetime | None = None
    step_started_at: datetime | None = None
    awaiting_approval: bool = False
    scheduled_start: datetime | None = None
    monitor_generation: int = 0
    rollout_percentage: float | None = None

    @property
    def rollout_complete(self) -> bool:
        return self.total_steps > 0 and self.current_step >= self.total_steps

    def find_alert(self, alert_id: str) -> LifecycleAlert | None:
        for alert in self.alerts:
            if alert.id == alert_id:
                return alert
        return None
