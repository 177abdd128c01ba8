"""Re-exports all Pydantic models."""

from skuld.models.analytics import (
    AuditEntry,
    BusinessImpact,
    Experiment,
    ExperimentAnalytics,
    ExperimentMetrics,
    ExperimentReport,
    FlagUpdate,
    StatisticalAnalysis,
    Winner,
)
from skuld.models.config import (
    AlertSeverity,
    CheckAction,
    ComparisonOperator,
    HealthCheck,
    HealthCheckType,
    LifecycleConfig,
    LifecycleConfigBody,
    MonitoringConfig,
    NotificationChannel,
    NotificationConfig,
    NotificationEvent,
    RollbackAction,
    RollbackConditions,
    RollbackTrigger,
    RollbackTriggerType,
    RolloutConditions,
    RolloutConfig,
    RolloutStep,
    RolloutStrategy,
    ScheduleConfig,
    StoppingAction,
    StoppingConditions,
    StoppingRule,
    StoppingRuleType,
)
from skuld.models.state import (
    EventType,
    HealthStatus,
    LifecycleAlert,
    LifecycleEvent,
    LifecycleState,
    LifecycleStatus,
    TriggeredBy,
)

__all__ = [
    "AlertSeverity",
    "AuditEntry",
    "BusinessImpact",
    "CheckAction",
    "ComparisonOperator",
    "EventType",
    "Experiment",
    "ExperimentAnalytics",
    "ExperimentMetrics",
    "ExperimentReport",
    "FlagUpdate",
    "HealthCheck",
    "HealthCheckType",
    "HealthStatus",
    "LifecycleAlert",
    "LifecycleConfig",
    "LifecycleConfigBody",
    "LifecycleEvent",
    "LifecycleState",
    "LifecycleStatus",
    "MonitoringConfig",
    "NotificationChannel",
    "NotificationConfig",
    "NotificationEvent",
    "RollbackAction",
    "RollbackConditions",
    "RollbackTrigger",
    "RollbackTriggerType",
    "RolloutConditions",
    "RolloutConfig",
    "RolloutStep",
    "RolloutStrategy",
    "ScheduleConfig",
    "StatisticalAnalysis",
    "StoppingAction",
    "StoppingConditions",
    "StoppingRule",
    "StoppingRuleType",
    "TriggeredBy",
    "Winner",
]
