"""Lifecycle configuration: one per experiment, set by whoever owns the experiment."""

from __future__ import annotations

from datetime import date, datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from skuld.models.base import new_id, utcnow

# --- Monitoring ---


class HealthCheckType(StrEnum):
    ERROR_RATE = "error_rate"
    RESPONSE_TIME = "response_time"
    CONVERSION_RATE = "conversion_rate"
    SAMPLE_SIZE = "sample_size"


class ComparisonOperator(StrEnum):
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"


class CheckAction(StrEnum):
    ALERT = "alert"
    PAUSE = "pause"
    STOP = "stop"
    ROLLBACK = "rollback"


class AlertSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class HealthCheck(BaseModel):
    """A named metric threshold.

    ``operator`` describes the healthy side: ``greater_than`` passes when the
    metric is above ``threshold``, ``less_than`` when it is below.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    type: HealthCheckType
    threshold: float
    operator: ComparisonOperator = ComparisonOperator.LESS_THAN
    action: CheckAction = CheckAction.ALERT
    severity: AlertSeverity | None = None


class MonitoringConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    metrics: list[str] = Field(default_factory=list)
    frequency_minutes: int = Field(default=5, ge=1)
    health_checks: list[HealthCheck] = Field(default_factory=list)


# --- Rollout ---


class RolloutStrategy(StrEnum):
    GRADUAL = "gradual"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"


class RolloutConditions(BaseModel):
    """Advancement gates for a rollout step. Unset gates are ignored."""

    model_config = ConfigDict(frozen=True)

    min_conversion_rate: float | None = None
    max_error_rate: float | None = None
    min_participants: int | None = None
    statistical_significance: float | None = None


class RolloutStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    percentage: float = Field(ge=0, le=100)
    duration_hours: float = Field(default=0, ge=0)
    conditions: RolloutConditions = Field(default_factory=RolloutConditions)
    auto_proceed: bool = True


class RolloutConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    strategy: RolloutStrategy = RolloutStrategy.GRADUAL
    steps: list[RolloutStep] = Field(default_factory=list)


# --- Stopping rules ---


class StoppingRuleType(StrEnum):
    STATISTICAL = "statistical"
    BUSINESS = "business"
    TECHNICAL = "technical"
    TIME = "time"


class StoppingAction(StrEnum):
    STOP = "stop"
    PAUSE = "pause"
    CONTINUE = "continue"


class StoppingConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    roi: float = 0.0
    sample_size: int = 0
    max_days: float | None = None


class StoppingRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("rule"))
    name: str
    type: StoppingRuleType
    conditions: StoppingConditions = Field(default_factory=StoppingConditions)
    action: StoppingAction = StoppingAction.STOP
    priority: int = 0


# --- Rollback triggers ---


class RollbackTriggerType(StrEnum):
    ERROR_RATE = "error_rate"
    PERFORMANCE = "performance"
    CONVERSION = "conversion"
    MANUAL = "manual"


class RollbackAction(StrEnum):
    IMMEDIATE = "immediate"
    GRADUAL = "gradual"


class RollbackConditions(BaseModel):
    model_config = ConfigDict(frozen=True)

    threshold: float | None = None
    triggered: bool = False


class RollbackTrigger(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: new_id("trigger"))
    name: str
    type: RollbackTriggerType
    conditions: RollbackConditions = Field(default_factory=RollbackConditions)
    action: RollbackAction = RollbackAction.IMMEDIATE
    timeout_minutes: int = Field(default=0, ge=0)


# --- Notifications ---


class NotificationChannel(StrEnum):
    CONSOLE = "console"
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    IN_APP = "in_app"


class NotificationEvent(StrEnum):
    STARTED = "started"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    MILESTONE_REACHED = "milestone_reached"
    ALERT = "alert"


class NotificationConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    channels: list[NotificationChannel] = Field(default_factory=list)
    events: list[NotificationEvent] = Field(default_factory=list)
    recipients: list[str] = Field(default_factory=list)
    templates: dict[str, str] = Field(default_factory=dict)

    def subscribes_to(self, event: NotificationEvent) -> bool:
        if not self.enabled:
            return False
        if event in self.events:
            return True
        # "stopped" and "completed" name the same transition
        aliases = {NotificationEvent.STOPPED, NotificationEvent.COMPLETED}
        return event in aliases and bool(aliases & set(self.events))


# --- Schedule ---


class ScheduleConfig(BaseModel):
    """Start/end gating.

    ``start_time``/``end_time`` only apply when ``enabled``; business-hours
    gating applies whenever ``business_hours_only`` is set. Naive datetimes
    are interpreted in ``timezone``.
    """

    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    timezone: str = "UTC"
    start_time: datetime | None = None
    end_time: datetime | None = None
    business_hours_only: bool = False
    exclude_dates: list[date] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _localize(cls, value: datetime | None, info: ValidationInfo) -> datetime | None:
        if value is None or value.tzinfo is not None:
            return value
        return value.replace(tzinfo=ZoneInfo(info.data.get("timezone", "UTC")))

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


# --- Top-level ---


class LifecycleConfigBody(BaseModel):
    """Everything about a lifecycle config except its identity."""

    model_config = ConfigDict(frozen=True)

    auto_start: bool = False
    auto_stop: bool = False
    auto_rollback: bool = False
    auto_rollout: bool = False
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    rollout: RolloutConfig = Field(default_factory=RolloutConfig)
    stopping_rules: list[StoppingRule] = Field(default_factory=list)
    rollback_triggers: list[RollbackTrigger] = Field(default_factory=list)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


IDENTITY_FIELDS = frozenset({"id", "experiment_id", "created_at", "updated_at"})


class LifecycleConfig(LifecycleConfigBody):
    id: str = Field(default_factory=lambda: new_id("lifecycle"))
    experiment_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def with_patch(self, patch: dict[str, Any], now: datetime) -> LifecycleConfig:
        """Shallow-merge *patch* over the body and re-validate.

        Raises ValueError if the patch touches identity fields.
        """
        touched = IDENTITY_FIELDS & patch.keys()
        if touched:
            raise ValueError(f"Cannot patch identity fields: {sorted(touched)}")
        unknown = patch.keys() - LifecycleConfigBody.model_fields.keys()
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")
        merged = {**self.model_dump(), **patch, "updated_at": now}
        return LifecycleConfig.model_validate(merged)
