"""Pure rule evaluators: health checks, stopping rules, rollback triggers, rollout gates.

Nothing here performs I/O or mutates state. Each function takes a config
fragment and an analytics snapshot and returns a verdict the controller acts on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from skuld.models.config import (
    AlertSeverity,
    CheckAction,
    ComparisonOperator,
    HealthCheckType,
    RollbackTriggerType,
    StoppingRuleType,
)
from skuld.models.state import HealthStatus, LifecycleAlert

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from skuld.models.analytics import ExperimentAnalytics
    from skuld.models.config import (
        HealthCheck,
        RollbackTrigger,
        RolloutConditions,
        RolloutStep,
        StoppingRule,
    )

HEALTHY_MIN_SCORE = 80
WARNING_MIN_SCORE = 50

DEFAULT_ERROR_RATE_THRESHOLD = 0.1
DEFAULT_RESPONSE_TIME_THRESHOLD = 5000.0
DEFAULT_CONVERSION_THRESHOLD = 0.01


# --- Health ---


@dataclass(frozen=True)
class HealthVerdict:
    score: int
    health: HealthStatus
    alerts: list[LifecycleAlert] = field(default_factory=list)

    @property
    def failed_checks(self) -> int:
        return len(self.alerts)


def metric_for_check(check_type: HealthCheckType, analytics: ExperimentAnalytics) -> float:
    metrics = analytics.metrics
    if check_type == HealthCheckType.ERROR_RATE:
        return metrics.error_rate
    if check_type == HealthCheckType.RESPONSE_TIME:
        return metrics.response_time
    if check_type == HealthCheckType.CONVERSION_RATE:
        return metrics.overall_conversion_rate
    return float(metrics.total_participants)


def check_passes(check: HealthCheck, value: float) -> bool:
    if check.operator == ComparisonOperator.GREATER_THAN:
        return value > check.threshold
    return value < check.threshold


def health_from_score(score: int) -> HealthStatus:
    if score >= HEALTHY_MIN_SCORE:
        return HealthStatus.HEALTHY
    if score >= WARNING_MIN_SCORE:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


def _alert_severity(check: HealthCheck) -> AlertSeverity:
    if check.severity is not None:
        return check.severity
    if check.type == HealthCheckType.ERROR_RATE:
        return AlertSeverity.CRITICAL
    return AlertSeverity.WARNING


def evaluate_health(
    checks: Iterable[HealthCheck],
    analytics: ExperimentAnalytics,
    *,
    now: datetime,
    penalty: int = 20,
) -> HealthVerdict:
    """Score the experiment from 100 down by *penalty* per failing check."""
    score = 100
    alerts: list[LifecycleAlert] = []
    for check in checks:
        value = metric_for_check(check.type, analytics)
        if check_passes(check, value):
            continue
        score -= penalty
        alerts.append(
            LifecycleAlert(
                severity=_alert_severity(check),
                message=f"{check.name}: {value} (threshold: {check.threshold})",
                timestamp=now,
                action_required=check.action != CheckAction.ALERT,
                metadata={
                    "check": check.name,
                    "type": check.type.value,
                    "value": value,
                    "threshold": check.threshold,
                    "operator": check.operator.value,
                },
            )
        )
    return HealthVerdict(score=score, health=health_from_score(score), alerts=alerts)


# --- Stopping rules ---


def stopping_rule_holds(
    rule: StoppingRule,
    analytics: ExperimentAnalytics,
    *,
    started_at: datetime | None,
    now: datetime,
) -> bool:
    conditions = rule.conditions
    if rule.type == StoppingRuleType.STATISTICAL:
        return analytics.statistical_analysis.winner is not None
    if rule.type == StoppingRuleType.BUSINESS:
        return analytics.business_impact.roi > conditions.roi
    if rule.type == StoppingRuleType.TECHNICAL:
        return analytics.metrics.total_participants >= conditions.sample_size
    if rule.type == StoppingRuleType.TIME:
        if conditions.max_days is None or started_at is None:
            return False
        return now - started_at >= timedelta(days=conditions.max_days)
    return False


def evaluate_stopping_rules(
    rules: Sequence[StoppingRule],
    analytics: ExperimentAnalytics,
    *,
    started_at: datetime | None,
    now: datetime,
) -> StoppingRule | None:
    """Return the highest-priority rule that holds, or None.

    Rules with equal priority keep their configured order. Evaluation stops
    at the first match, so lower-priority rules are never looked at.
    """
    for rule in sorted(rules, key=lambda r: r.priority, reverse=True):
        if stopping_rule_holds(rule, analytics, started_at=started_at, now=now):
            return rule
    return None


# --- Rollback triggers ---


def rollback_trigger_holds(trigger: RollbackTrigger, analytics: ExperimentAnalytics) -> bool:
    threshold = trigger.conditions.threshold
    metrics = analytics.metrics
    if trigger.type == RollbackTriggerType.ERROR_RATE:
        limit = DEFAULT_ERROR_RATE_THRESHOLD if threshold is None else threshold
        return metrics.total_participants > 0 and metrics.error_rate > limit
    if trigger.type == RollbackTriggerType.PERFORMANCE:
        limit = DEFAULT_RESPONSE_TIME_THRESHOLD if threshold is None else threshold
        return metrics.response_time > limit
    if trigger.type == RollbackTriggerType.CONVERSION:
        limit = DEFAULT_CONVERSION_THRESHOLD if threshold is None else threshold
        return metrics.overall_conversion_rate < limit
    if trigger.type == RollbackTriggerType.MANUAL:
        return trigger.conditions.triggered
    return False


def evaluate_rollback_triggers(
    triggers: Sequence[RollbackTrigger], analytics: ExperimentAnalytics
) -> RollbackTrigger | None:
    """Return the first trigger (in configured order) that holds, or None."""
    for trigger in triggers:
        if rollback_trigger_holds(trigger, analytics):
            return trigger
    return None


# --- Rollout ---


class RolloutDecision(StrEnum):
    WAIT = "wait"
    ADVANCE = "advance"
    AWAIT_APPROVAL = "await_approval"


def rollout_conditions_met(conditions: RolloutConditions, analytics: ExperimentAnalytics) -> bool:
    metrics = analytics.metrics
    if (
        conditions.min_conversion_rate is not None
        and metrics.overall_conversion_rate < conditions.min_conversion_rate
    ):
        return False
    if conditions.max_error_rate is not None and metrics.error_rate > conditions.max_error_rate:
        return False
    if (
        conditions.min_participants is not None
        and metrics.total_participants < conditions.min_participants
    ):
        return False
    if conditions.statistical_significance is not None:
        winner = analytics.statistical_analysis.winner
        if winner is None or winner.confidence < conditions.statistical_significance:
            return False
    return True


def evaluate_rollout_step(
    step: RolloutStep,
    analytics: ExperimentAnalytics,
    *,
    step_started_at: datetime | None,
    now: datetime,
) -> RolloutDecision:
    """Decide what to do with the current rollout step.

    ``auto_proceed=True``: advance once the duration has elapsed and every
    condition holds. ``auto_proceed=False``: once the duration has elapsed the
    step waits for an operator to call ``advance_rollout``.
    """
    if step_started_at is None:
        return RolloutDecision.WAIT
    if now - step_started_at < timedelta(hours=step.duration_hours):
        return RolloutDecision.WAIT
    if not step.auto_proceed:
        return RolloutDecision.AWAIT_APPROVAL
    if rollout_conditions_met(step.conditions, analytics):
        return RolloutDecision.ADVANCE
    return RolloutDecision.WAIT
