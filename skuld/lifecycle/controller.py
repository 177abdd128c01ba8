"""Lifecycle controller: the control loop and the transition executor.

One ``LifecycleController`` owns the lifecycle of every experiment that has a
config in its repository. ``tick()`` is the global scan; the public
transition methods (``start``, ``pause``, ``stop``, ``rollback``,
``advance_rollout``) are what an operator calls.

All state mutation happens while holding the experiment (an asyncio lock in
this process plus a repository lease across processes). Autonomous work
(ticks, deferred starts) never raises; operator calls raise ``SkuldError``
subclasses.
"""

from __future__ import annotations

import asyncio
import contextlib
import time as time_mod
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from skuld.audit import StructlogAuditSink
from skuld.config import Settings
from skuld.errors import (
    AlertNotFoundError,
    ConfigNotFoundError,
    EvaluationError,
    ExperimentBusyError,
    ExperimentNotFoundError,
    InvalidTransitionError,
    SkuldError,
    TransitionFailedError,
)
from skuld.lifecycle.evaluators import (
    RolloutDecision,
    evaluate_health,
    evaluate_rollback_triggers,
    evaluate_rollout_step,
    evaluate_stopping_rules,
)
from skuld.lifecycle.history import append_event, recent_events
from skuld.lifecycle.monitor import DeferredStarts, ExperimentGuard
from skuld.lifecycle.schedule import BusinessHours, end_time_reached, resolve_start_time
from skuld.metrics import (
    alerts_total,
    check_cycle_duration_seconds,
    check_cycles_total,
    experiment_health_score,
    experiment_rollout_percentage,
    ticks_total,
    transitions_total,
)
from skuld.models.analytics import AuditEntry, FlagUpdate
from skuld.models.base import new_id, utcnow
from skuld.models.config import (
    LifecycleConfig,
    LifecycleConfigBody,
    NotificationEvent,
    StoppingAction,
)
from skuld.models.state import (
    EventType,
    HealthStatus,
    LifecycleEvent,
    LifecycleState,
    LifecycleStatus,
    TriggeredBy,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from skuld.models.analytics import Experiment, ExperimentAnalytics
    from skuld.models.config import RollbackTrigger
    from skuld.models.state import LifecycleAlert
    from skuld.protocols import (
        AnalyticsPort,
        AuditSinkPort,
        ExperimentStorePort,
        LifecycleRepository,
        NotifierPort,
    )

logger = structlog.get_logger()

SYSTEM_ACTOR = "lifecycle_controller"

_ALLOWED_FROM: dict[str, frozenset[LifecycleStatus]] = {
    "start": frozenset({LifecycleStatus.DRAFT, LifecycleStatus.PAUSED, LifecycleStatus.FAILED}),
    "pause": frozenset({LifecycleStatus.RUNNING}),
    "stop": frozenset({LifecycleStatus.RUNNING, LifecycleStatus.PAUSED}),
    "rollback": frozenset(
        {
            LifecycleStatus.DRAFT,
            LifecycleStatus.RUNNING,
            LifecycleStatus.PAUSED,
            LifecycleStatus.COMPLETED,
        }
    ),
}


class LifecycleController:
    """Drives experiments through draft, running, paused, completed and failed."""

    def __init__(
        self,
        repository: LifecycleRepository,
        store: ExperimentStorePort,
        analytics: AnalyticsPort,
        *,
        audit: AuditSinkPort | None = None,
        notifier: NotifierPort | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._store = store
        self._analytics = analytics
        self._audit: AuditSinkPort = audit or StructlogAuditSink()
        self._notifier = notifier
        self.settings = settings or Settings()
        self._clock = clock
        # worker_id names the process; the suffix tells apart controllers inside it
        holder = f"{self.settings.worker_id}:{new_id('controller')}"
        self._guard = ExperimentGuard(
            repository,
            holder,
            ttl_seconds=self.settings.lease_ttl_seconds,
            wait_seconds=self.settings.lease_wait_seconds,
            poll_seconds=self.settings.lease_poll_seconds,
        )
        self._deferred = DeferredStarts(clock)
        self._hours = BusinessHours(
            start_hour=self.settings.business_hours_start,
            end_hour=self.settings.business_hours_end,
        )
        self._closing = asyncio.Event()

    # --- Configs ---

    async def create_config(
        self,
        experiment_id: str,
        body: LifecycleConfigBody | dict[str, Any] | None = None,
        actor: str = "user",
    ) -> LifecycleConfig:
        """Register a lifecycle config and a fresh draft state for *experiment_id*."""
        if body is None:
            body = LifecycleConfigBody()
        elif isinstance(body, dict):
            body = LifecycleConfigBody.model_validate(body)
        now = self._clock()
        config = LifecycleConfig.model_validate(
            {
                **body.model_dump(),
                "experiment_id": experiment_id,
                "created_at": now,
                "updated_at": now,
            }
        )
        state = LifecycleState(experiment_id=experiment_id, total_steps=_total_steps(config))
        self._repository.add_config(config, state)
        logger.info("Lifecycle config created", experiment_id=experiment_id, config_id=config.id)
        await self._log_audit(
            experiment_id,
            "lifecycle.config_created",
            old_value=None,
            new_value=config.id,
            actor=actor,
        )
        return config

    async def update_config(
        self, config_id: str, patch: dict[str, Any], actor: str = "user"
    ) -> LifecycleConfig:
        """Shallow-merge *patch* into a config body.

        Raises ConfigNotFoundError for an unknown id and ValueError for a
        patch that touches identity fields or fails validation.
        """
        config = self._repository.get_config(config_id)
        if config is None:
            raise ConfigNotFoundError(f"Lifecycle config {config_id} not found")
        experiment_id = config.experiment_id
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            updated = config.with_patch(patch, self._clock())
            self._repository.save_config(updated)

            state = self._require_state(experiment_id)
            if "rollout" in patch:
                state.total_steps = _total_steps(updated)
            if "monitoring" in patch and state.status == LifecycleStatus.RUNNING:
                # Re-arm the monitor so the new frequency takes effect
                self._start_monitor(updated, state)
            self._record(
                state, EventType.CONFIG_UPDATED, {"fields": sorted(patch)}, TriggeredBy.USER
            )
            self._repository.save_state(state)

        logger.info("Lifecycle config updated", experiment_id=experiment_id, fields=sorted(patch))
        await self._log_audit(
            experiment_id,
            "lifecycle.config_updated",
            old_value=config.model_dump(mode="json", include=set(patch)),
            new_value=updated.model_dump(mode="json", include=set(patch)),
            actor=actor,
        )
        return updated

    def get_config(self, experiment_id: str) -> LifecycleConfig | None:
        return self._repository.get_config_for_experiment(experiment_id)

    # --- Reads ---

    def get_state(self, experiment_id: str) -> LifecycleState | None:
        return self._repository.get_state(experiment_id)

    def list_states(self) -> list[LifecycleState]:
        return self._repository.list_states()

    def list_events(self, experiment_id: str, limit: int = 50) -> list[LifecycleEvent]:
        """Most recent events for an experiment, newest first."""
        return recent_events(self._require_state(experiment_id), limit)

    # --- Operator transitions ---

    async def start(self, experiment_id: str, actor: str = "user") -> LifecycleState:
        """Start (or resume) an experiment, deferring if the schedule says so."""
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            state = self._require_state(experiment_id)
            await self._start(config, state, actor=actor, triggered_by=TriggeredBy.USER)
            return state.model_copy(deep=True)

    async def pause(
        self, experiment_id: str, reason: str = "", actor: str = "user"
    ) -> LifecycleState:
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            state = self._require_state(experiment_id)
            await self._pause(
                config, state, reason=reason, actor=actor, triggered_by=TriggeredBy.USER
            )
            return state.model_copy(deep=True)

    async def stop(
        self, experiment_id: str, reason: str = "", actor: str = "user"
    ) -> LifecycleState:
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            state = self._require_state(experiment_id)
            await self._stop(
                config, state, reason=reason, actor=actor, triggered_by=TriggeredBy.USER
            )
            return state.model_copy(deep=True)

    async def rollback(
        self, experiment_id: str, reason: str = "", actor: str = "user"
    ) -> LifecycleState:
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            state = self._require_state(experiment_id)
            await self._rollback(
                config, state, reason=reason, actor=actor, triggered_by=TriggeredBy.USER
            )
            return state.model_copy(deep=True)

    async def advance_rollout(self, experiment_id: str, actor: str = "user") -> LifecycleState:
        """Move a running experiment to its next rollout step, ignoring gates."""
        async with self._guard.hold(experiment_id):
            config = self._require_config(experiment_id)
            state = self._require_state(experiment_id)
            if state.status != LifecycleStatus.RUNNING:
                raise InvalidTransitionError(experiment_id, state.status.value, "advance rollout")
            if not config.rollout.enabled or state.total_steps == 0:
                raise InvalidTransitionError(experiment_id, "without a rollout", "advance rollout")
            if state.rollout_complete:
                raise InvalidTransitionError(experiment_id, "fully rolled out", "advance rollout")
            await self._advance_rollout(config, state, actor=actor, triggered_by=TriggeredBy.USER)
            return state.model_copy(deep=True)

    async def acknowledge_alert(
        self, experiment_id: str, alert_id: str, actor: str = "user"
    ) -> LifecycleAlert:
        async with self._guard.hold(experiment_id):
            state = self._require_state(experiment_id)
            alert = state.find_alert(alert_id)
            if alert is None:
                raise AlertNotFoundError(
                    f"Alert {alert_id} not found on experiment {experiment_id}"
                )
            if alert.acknowledged:
                return alert.model_copy(deep=True)
            alert.acknowledged = True
            alert.acknowledged_by = actor
            self._record(
                state,
                EventType.ALERT_ACKNOWLEDGED,
                {"alert_id": alert_id, "actor": actor},
                TriggeredBy.USER,
            )
            self._repository.save_state(state)
            acknowledged = alert.model_copy(deep=True)

        await self._log_audit(
            experiment_id,
            "lifecycle.alert_acknowledged",
            old_value=False,
            new_value=True,
            actor=actor,
            reason=alert_id,
        )
        return acknowledged

    # --- Control loop ---

    async def tick(self) -> int:
        """Run one global scan. Returns the number of experiments serviced.

        Never raises: failures are logged per experiment.
        """
        ticks_total.inc()
        now = self._clock()
        states = self._repository.list_states()
        outcomes = await asyncio.gather(
            *(
                self._service(state.experiment_id, state.monitor_generation, now)
                for state in states
            ),
            return_exceptions=True,
        )
        serviced = 0
        for state, outcome in zip(states, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Experiment service crashed",
                    experiment_id=state.experiment_id,
                    error=str(outcome),
                    exc_info=outcome,
                )
            elif outcome not in ("idle", "busy"):
                serviced += 1
        return serviced

    async def run_forever(self) -> None:
        """Tick every ``tick_interval_seconds`` until ``close()`` is called."""
        await self.resume_schedules()
        interval = self.settings.tick_interval_seconds
        logger.info("Lifecycle ticker started", interval_seconds=interval)
        while not self._closing.is_set():
            try:
                await self.tick()
            except Exception as exc:
                logger.error("Tick failed", error=str(exc), exc_info=exc)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._closing.wait(), timeout=interval)
        logger.info("Lifecycle ticker stopped")

    async def resume_schedules(self) -> int:
        """Re-arm timers for deferred starts persisted by an earlier process."""
        armed = 0
        for state in self._repository.list_states():
            if state.scheduled_start is None or self._deferred.is_armed(state.experiment_id):
                continue
            if state.status not in _ALLOWED_FROM["start"]:
                continue
            self._deferred.arm(
                state.experiment_id, state.scheduled_start, self._fire_deferred_start
            )
            armed += 1
        return armed

    async def close(self) -> None:
        self._closing.set()
        await self._deferred.close()

    # --- Scheduling internals ---

    async def _service(self, experiment_id: str, generation: int, now: datetime) -> str:
        """Do at most one unit of scheduled work for an experiment."""
        if self._guard.is_busy(experiment_id):
            logger.debug("Experiment busy, skipping this tick", experiment_id=experiment_id)
            check_cycles_total.labels(outcome="skipped").inc()
            return "busy"

        try:
            async with self._guard.hold(experiment_id, wait=False):
                with structlog.contextvars.bound_contextvars(
                    experiment_id=experiment_id, correlation_id=new_id("cycle")
                ):
                    config = self._repository.get_config_for_experiment(experiment_id)
                    state = self._repository.get_state(experiment_id)
                    if config is None or state is None:
                        return "idle"
                    if state.monitor_generation != generation:
                        # A transition landed between the scan and this job
                        return "idle"
                    try:
                        return await self._service_locked(config, state, now)
                    except SkuldError as exc:
                        logger.warning("Scheduled work failed", error=str(exc))
                        return "error"
        except ExperimentBusyError:
            logger.debug("Experiment leased by another worker", experiment_id=experiment_id)
            check_cycles_total.labels(outcome="skipped").inc()
            return "busy"

    async def _service_locked(
        self, config: LifecycleConfig, state: LifecycleState, now: datetime
    ) -> str:
        startable = state.status in _ALLOWED_FROM["start"]
        if state.scheduled_start is not None and state.scheduled_start <= now and startable:
            await self._start(
                config,
                state,
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SCHEDULE,
                honor_schedule=False,
            )
            return "scheduled_start"

        if (
            state.status == LifecycleStatus.DRAFT
            and config.auto_start
            and state.scheduled_start is None
        ):
            await self._start(config, state, actor=SYSTEM_ACTOR, triggered_by=TriggeredBy.SYSTEM)
            return "auto_start"

        if (
            config.auto_stop
            and state.status in _ALLOWED_FROM["stop"]
            and end_time_reached(config.schedule, now)
        ):
            await self._stop(
                config,
                state,
                reason="Scheduled end time reached",
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SCHEDULE,
            )
            return "auto_stop"

        if state.status == LifecycleStatus.RUNNING and (
            state.next_check is None or state.next_check <= now
        ):
            return await self._check_cycle(config, state)

        return "idle"

    async def _fire_deferred_start(self, experiment_id: str) -> None:
        try:
            async with self._guard.hold(experiment_id):
                config = self._repository.get_config_for_experiment(experiment_id)
                state = self._repository.get_state(experiment_id)
                if config is None or state is None or state.scheduled_start is None:
                    return
                if state.status not in _ALLOWED_FROM["start"]:
                    return
                if state.scheduled_start > self._clock():
                    self._deferred.arm(
                        experiment_id, state.scheduled_start, self._fire_deferred_start
                    )
                    return
                await self._start(
                    config,
                    state,
                    actor=SYSTEM_ACTOR,
                    triggered_by=TriggeredBy.SCHEDULE,
                    honor_schedule=False,
                )
        except ExperimentBusyError:
            # The persisted scheduled_start is picked up by the next tick
            logger.info("Deferred start left to the next tick", experiment_id=experiment_id)
        except Exception as exc:
            logger.error(
                "Deferred start failed", experiment_id=experiment_id, error=str(exc), exc_info=exc
            )

    # --- Check cycle ---

    async def _check_cycle(self, config: LifecycleConfig, state: LifecycleState) -> str:
        started = time_mod.monotonic()
        try:
            outcome = await self._evaluate(config, state)
        except EvaluationError as exc:
            logger.warning("Check cycle skipped", error=str(exc))
            outcome = "evaluation_error"
        except Exception as exc:
            logger.error("Check cycle failed", error=str(exc), exc_info=exc)
            outcome = "error"
        check_cycle_duration_seconds.observe(time_mod.monotonic() - started)
        check_cycles_total.labels(outcome=outcome).inc()
        return outcome

    async def _fetch_analytics(self, experiment_id: str) -> ExperimentAnalytics:
        timeout = self.settings.analytics_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._analytics.analyze_experiment(experiment_id), timeout=timeout
            )
        except TimeoutError as exc:
            raise EvaluationError(f"Analytics timed out after {timeout}s") from exc
        except Exception as exc:
            raise EvaluationError(f"Analytics unavailable: {exc}") from exc

    async def _evaluate(self, config: LifecycleConfig, state: LifecycleState) -> str:
        """One check cycle. Applies at most one transition.

        Priority: rollback > stopping rule > rollout advance.
        """
        experiment_id = state.experiment_id
        generation = state.monitor_generation
        analytics = await self._fetch_analytics(experiment_id)
        if not self._is_current(experiment_id, generation):
            return "cancelled"

        now = self._clock()
        state.metrics = {
            "conversion_rate": analytics.metrics.overall_conversion_rate,
            "participants": float(analytics.metrics.total_participants),
            "revenue_impact": analytics.business_impact.revenue_impact,
            "error_rate": analytics.metrics.error_rate,
            "response_time": analytics.metrics.response_time,
            "roi": analytics.business_impact.roi,
        }

        new_alerts: list[LifecycleAlert] = []
        critical = False
        if config.monitoring.enabled:
            verdict = evaluate_health(
                config.monitoring.health_checks,
                analytics,
                now=now,
                penalty=self.settings.health_penalty,
            )
            state.health = verdict.health
            state.alerts.extend(verdict.alerts)
            new_alerts = verdict.alerts
            critical = verdict.health == HealthStatus.CRITICAL
            experiment_health_score.labels(experiment_id=experiment_id).set(verdict.score)
            for alert in verdict.alerts:
                alerts_total.labels(severity=alert.severity.value).inc()

        rule = evaluate_stopping_rules(
            config.stopping_rules,
            analytics,
            started_at=state.started_at,
            now=now,
        )
        trigger = evaluate_rollback_triggers(config.rollback_triggers, analytics)

        outcome = "checked"
        if critical and config.auto_rollback:
            await self._rollback(
                config,
                state,
                reason="Critical health detected",
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SYSTEM,
            )
            outcome = "rollback"
        elif trigger is not None:
            await self._rollback(
                config,
                state,
                reason=f"Rollback trigger fired: {trigger.name}",
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SYSTEM,
                trigger=trigger,
            )
            outcome = "rollback"
        elif rule is not None and rule.action == StoppingAction.STOP:
            await self._stop(
                config,
                state,
                reason=f"Stopping rule triggered: {rule.name}",
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SYSTEM,
                analytics=analytics,
            )
            outcome = "stop"
        elif rule is not None and rule.action == StoppingAction.PAUSE:
            await self._pause(
                config,
                state,
                reason=f"Stopping rule triggered: {rule.name}",
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SYSTEM,
            )
            outcome = "pause"
        elif config.auto_rollout and config.rollout.enabled and not state.rollout_complete:
            outcome = await self._progress_rollout(config, state, analytics, now)

        state.last_check = now
        if state.status == LifecycleStatus.RUNNING:
            state.next_check = now + timedelta(minutes=config.monitoring.frequency_minutes)
        self._repository.save_state(state)

        if new_alerts:
            await self._notify(
                config,
                NotificationEvent.ALERT,
                {
                    "health": state.health.value,
                    "alerts": [alert.message for alert in new_alerts],
                    "severity": max(new_alerts, key=_severity_rank).severity.value,
                },
            )
        logger.info(
            "Check cycle complete",
            outcome=outcome,
            health=state.health.value,
            alerts=len(new_alerts),
        )
        return outcome

    async def _progress_rollout(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        analytics: ExperimentAnalytics,
        now: datetime,
    ) -> str:
        steps = config.rollout.steps
        if state.current_step >= len(steps):
            return "checked"
        if state.step_started_at is None:
            # The step's flag update failed earlier; try it again
            applied = await self._apply_step(
                config,
                state,
                state.current_step,
                actor=SYSTEM_ACTOR,
                triggered_by=TriggeredBy.SYSTEM,
            )
            return "rollout_step" if applied else "checked"

        decision = evaluate_rollout_step(
            steps[state.current_step],
            analytics,
            step_started_at=state.step_started_at,
            now=now,
        )
        if decision == RolloutDecision.ADVANCE:
            await self._advance_rollout(
                config, state, actor=SYSTEM_ACTOR, triggered_by=TriggeredBy.SYSTEM
            )
            return "rollout_advance"
        if decision == RolloutDecision.AWAIT_APPROVAL and not state.awaiting_approval:
            state.awaiting_approval = True
            self._record(
                state,
                EventType.ROLLOUT_STEP_AWAITING_APPROVAL,
                {
                    "step": state.current_step + 1,
                    "percentage": steps[state.current_step].percentage,
                },
                TriggeredBy.SYSTEM,
            )
            return "awaiting_approval"
        return "checked"

    # --- Transition executor ---

    async def _start(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        *,
        actor: str,
        triggered_by: TriggeredBy,
        honor_schedule: bool = True,
    ) -> None:
        experiment_id = state.experiment_id
        self._ensure_allowed(state, "start")
        now = self._clock()

        if honor_schedule:
            start_at = resolve_start_time(config.schedule, now, self._hours)
            if start_at is not None:
                self._defer_start(config, state, start_at, triggered_by)
                return

        resuming = state.status == LifecycleStatus.PAUSED
        previous = state.status
        # A rollback left the flag disabled at 0%
        restore = _restored_flag(config) if previous == LifecycleStatus.FAILED else None
        try:
            experiment = await self._get_experiment(experiment_id)
            await self._call_store(self._store.start_experiment(experiment_id, actor))
            if restore is not None:
                await self._call_store(
                    self._store.update_flag(
                        experiment.flag_id, restore, actor, "Restart after rollback"
                    )
                )
        except ExperimentNotFoundError:
            raise
        except Exception as exc:
            self._transition_failed(state, EventType.START_FAILED, "start", exc, triggered_by)
            return

        self._deferred.cancel(experiment_id)
        state.scheduled_start = None
        state.status = LifecycleStatus.RUNNING
        if not resuming:
            state.health = HealthStatus.HEALTHY
            state.started_at = now
            state.current_step = 0
            state.step_started_at = None
            state.awaiting_approval = False
            state.total_steps = _total_steps(config)
        if restore is not None and restore.rollout_percentage is not None:
            state.rollout_percentage = restore.rollout_percentage
            experiment_rollout_percentage.labels(experiment_id=experiment_id).set(
                restore.rollout_percentage
            )
        self._start_monitor(config, state)
        self._record(
            state,
            EventType.STARTED,
            {"previous_status": previous.value, "resumed": resuming, "actor": actor},
            triggered_by,
        )
        transitions_total.labels(transition="start", status="success").inc()
        logger.info("Experiment started", experiment_id=experiment_id, resumed=resuming)

        if not resuming and config.rollout.enabled and state.total_steps > 0:
            await self._apply_step(
                config, state, 0, actor=actor, triggered_by=triggered_by, propagate=False
            )
        self._repository.save_state(state)

        await self._notify(
            config,
            NotificationEvent.STARTED,
            {"experiment_name": experiment.name, "triggered_by": triggered_by.value},
        )
        await self._log_audit(
            experiment_id,
            "lifecycle.start",
            old_value=previous.value,
            new_value=LifecycleStatus.RUNNING.value,
            actor=actor,
        )

    def _defer_start(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        start_at: datetime,
        triggered_by: TriggeredBy,
    ) -> None:
        state.scheduled_start = start_at
        self._record(
            state,
            EventType.SCHEDULED_START,
            {
                "scheduled_time": start_at.isoformat(),
                "timezone": config.schedule.timezone,
                "reason": "business_hours" if config.schedule.business_hours_only else "start_time",
            },
            triggered_by,
        )
        self._repository.save_state(state)
        self._deferred.arm(state.experiment_id, start_at, self._fire_deferred_start)
        logger.info(
            "Experiment start deferred",
            experiment_id=state.experiment_id,
            scheduled_time=start_at.isoformat(),
        )

    async def _pause(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        *,
        reason: str,
        actor: str,
        triggered_by: TriggeredBy,
    ) -> None:
        experiment_id = state.experiment_id
        self._ensure_allowed(state, "pause")
        try:
            await self._call_store(self._store.pause_experiment(experiment_id, actor, reason))
        except Exception as exc:
            self._transition_failed(state, EventType.PAUSE_FAILED, "pause", exc, triggered_by)
            return

        previous = state.status
        self._cancel_scheduled_start(state, "paused", triggered_by)
        state.status = LifecycleStatus.PAUSED
        self._stop_monitor(state)
        self._record(state, EventType.PAUSED, {"reason": reason, "actor": actor}, triggered_by)
        self._repository.save_state(state)
        transitions_total.labels(transition="pause", status="success").inc()
        logger.info("Experiment paused", experiment_id=experiment_id, reason=reason)

        await self._notify(
            config, NotificationEvent.PAUSED, {"reason": reason, "triggered_by": triggered_by.value}
        )
        await self._log_audit(
            experiment_id,
            "lifecycle.pause",
            old_value=previous.value,
            new_value=LifecycleStatus.PAUSED.value,
            actor=actor,
            reason=reason,
        )

    async def _stop(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        *,
        reason: str,
        actor: str,
        triggered_by: TriggeredBy,
        analytics: ExperimentAnalytics | None = None,
    ) -> None:
        experiment_id = state.experiment_id
        self._ensure_allowed(state, "stop")
        try:
            await self._call_store(self._store.complete_experiment(experiment_id, actor))
        except Exception as exc:
            self._transition_failed(state, EventType.STOP_FAILED, "stop", exc, triggered_by)
            return

        previous = state.status
        self._cancel_scheduled_start(state, "stopped", triggered_by)
        state.status = LifecycleStatus.COMPLETED
        self._stop_monitor(state)
        summary = await self._final_summary(experiment_id, analytics)
        self._record(
            state, EventType.COMPLETED, {"reason": reason, "actor": actor, **summary}, triggered_by
        )
        self._repository.save_state(state)
        transitions_total.labels(transition="stop", status="success").inc()
        logger.info("Experiment stopped", experiment_id=experiment_id, reason=reason)

        await self._notify(
            config,
            NotificationEvent.COMPLETED,
            {"reason": reason, "triggered_by": triggered_by.value, **summary},
        )
        await self._log_audit(
            experiment_id,
            "lifecycle.stop",
            old_value=previous.value,
            new_value=LifecycleStatus.COMPLETED.value,
            actor=actor,
            reason=reason,
        )

    async def _final_summary(
        self, experiment_id: str, analytics: ExperimentAnalytics | None
    ) -> dict[str, Any]:
        """Winner and executive summary for the completion event. Best-effort."""
        timeout = self.settings.analytics_timeout_seconds
        summary: dict[str, Any] = {"winner": None, "confidence": None, "summary": ""}
        try:
            if analytics is None:
                analytics = await asyncio.wait_for(
                    self._analytics.analyze_experiment(experiment_id), timeout=timeout
                )
            report = await asyncio.wait_for(
                self._analytics.generate_experiment_report(experiment_id), timeout=timeout
            )
        except Exception as exc:
            logger.warning("Final report unavailable", experiment_id=experiment_id, error=str(exc))
            return summary
        winner = analytics.statistical_analysis.winner
        if winner is not None:
            summary["winner"] = winner.variant_name
            summary["confidence"] = winner.confidence
        summary["summary"] = report.executive_summary
        return summary

    async def _rollback(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        *,
        reason: str,
        actor: str,
        triggered_by: TriggeredBy,
        trigger: RollbackTrigger | None = None,
    ) -> None:
        experiment_id = state.experiment_id
        self._ensure_allowed(state, "rollback")
        try:
            experiment = await self._get_experiment(experiment_id)
            await self._call_store(
                self._store.update_flag(
                    experiment.flag_id,
                    FlagUpdate(enabled=False, rollout_percentage=0),
                    actor,
                    f"Rollback: {reason}",
                )
            )
        except ExperimentNotFoundError:
            raise
        except Exception as exc:
            self._transition_failed(state, EventType.ROLLBACK_FAILED, "rollback", exc, triggered_by)
            return

        previous = state.status
        self._cancel_scheduled_start(state, "rolled_back", triggered_by)
        state.status = LifecycleStatus.FAILED
        state.health = HealthStatus.CRITICAL
        state.rollout_percentage = 0
        state.awaiting_approval = False
        experiment_rollout_percentage.labels(experiment_id=experiment_id).set(0)
        self._stop_monitor(state)
        data: dict[str, Any] = {"reason": reason, "actor": actor}
        if trigger is not None:
            # Gradual rollbacks are applied immediately
            data.update(
                trigger=trigger.name,
                trigger_type=trigger.type.value,
                action=trigger.action.value,
            )
        self._record(state, EventType.ROLLED_BACK, data, triggered_by)
        self._repository.save_state(state)
        transitions_total.labels(transition="rollback", status="success").inc()
        logger.warning("Experiment rolled back", experiment_id=experiment_id, reason=reason)

        await self._notify(
            config,
            NotificationEvent.ROLLED_BACK,
            {"reason": reason, "triggered_by": triggered_by.value, "severity": "critical"},
        )
        await self._log_audit(
            experiment_id,
            "lifecycle.rollback",
            old_value=previous.value,
            new_value=LifecycleStatus.FAILED.value,
            actor=actor,
            reason=reason,
        )

    async def _advance_rollout(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        *,
        actor: str,
        triggered_by: TriggeredBy,
    ) -> None:
        next_index = state.current_step + 1
        if next_index < state.total_steps:
            await self._apply_step(
                config, state, next_index, actor=actor, triggered_by=triggered_by
            )
            self._repository.save_state(state)
            return

        state.current_step = state.total_steps
        state.awaiting_approval = False
        self._record(
            state, EventType.ROLLOUT_COMPLETED, {"total_steps": state.total_steps}, triggered_by
        )
        self._repository.save_state(state)
        logger.info("Rollout completed", experiment_id=state.experiment_id)
        await self._notify(
            config,
            NotificationEvent.MILESTONE_REACHED,
            {"milestone": "Rollout completed", "percentage": state.rollout_percentage},
        )

    async def _apply_step(
        self,
        config: LifecycleConfig,
        state: LifecycleState,
        index: int,
        *,
        actor: str,
        triggered_by: TriggeredBy,
        propagate: bool | None = None,
    ) -> bool:
        """Set the flag to step *index*'s percentage. Returns False on failure."""
        experiment_id = state.experiment_id
        step = config.rollout.steps[index]
        try:
            experiment = await self._get_experiment(experiment_id)
            await self._call_store(
                self._store.update_flag(
                    experiment.flag_id,
                    FlagUpdate(rollout_percentage=step.percentage),
                    actor,
                    f"Rollout step {index + 1}: {step.percentage}%",
                )
            )
        except Exception as exc:
            self._transition_failed(
                state,
                EventType.ROLLOUT_STEP_FAILED,
                "advance rollout",
                exc,
                triggered_by,
                extra={"step": index + 1},
                propagate=propagate,
            )
            return False

        state.current_step = max(state.current_step, index)
        state.step_started_at = self._clock()
        state.awaiting_approval = False
        state.rollout_percentage = step.percentage
        experiment_rollout_percentage.labels(experiment_id=experiment_id).set(step.percentage)
        self._record(
            state,
            EventType.ROLLOUT_STEP_STARTED,
            {
                "step": index + 1,
                "percentage": step.percentage,
                "duration_hours": step.duration_hours,
            },
            triggered_by,
        )
        transitions_total.labels(transition="rollout_step", status="success").inc()
        logger.info(
            "Rollout step started",
            experiment_id=experiment_id,
            step=index + 1,
            percentage=step.percentage,
        )
        await self._notify(
            config,
            NotificationEvent.MILESTONE_REACHED,
            {"milestone": f"Rollout step {index + 1}", "percentage": step.percentage},
        )
        return True

    # --- Helpers ---

    def _require_config(self, experiment_id: str) -> LifecycleConfig:
        config = self._repository.get_config_for_experiment(experiment_id)
        if config is None:
            raise ConfigNotFoundError(f"No lifecycle config found for experiment {experiment_id}")
        return config

    def _require_state(self, experiment_id: str) -> LifecycleState:
        state = self._repository.get_state(experiment_id)
        if state is None:
            raise ConfigNotFoundError(f"No lifecycle state found for experiment {experiment_id}")
        return state

    @staticmethod
    def _ensure_allowed(state: LifecycleState, transition: str) -> None:
        if state.status not in _ALLOWED_FROM[transition]:
            raise InvalidTransitionError(state.experiment_id, state.status.value, transition)

    def _is_current(self, experiment_id: str, generation: int) -> bool:
        state = self._repository.get_state(experiment_id)
        return (
            state is not None
            and state.status == LifecycleStatus.RUNNING
            and state.monitor_generation == generation
        )

    def _cancel_scheduled_start(
        self, state: LifecycleState, reason: str, triggered_by: TriggeredBy
    ) -> None:
        """Disarm a pending deferred start and record that it will not happen."""
        armed = self._deferred.cancel(state.experiment_id)
        if armed or state.scheduled_start is not None:
            self._record(
                state,
                EventType.SCHEDULED_START_CANCELLED,
                {"scheduled_time": _iso(state.scheduled_start), "reason": reason},
                triggered_by,
            )
        state.scheduled_start = None

    def _start_monitor(self, config: LifecycleConfig, state: LifecycleState) -> None:
        state.monitor_generation += 1
        now = self._clock()
        state.last_check = now
        state.next_check = now + timedelta(minutes=config.monitoring.frequency_minutes)

    def _stop_monitor(self, state: LifecycleState) -> None:
        state.monitor_generation += 1
        state.next_check = None

    def _record(
        self,
        state: LifecycleState,
        event_type: EventType,
        data: dict[str, Any],
        triggered_by: TriggeredBy,
    ) -> LifecycleEvent:
        event = LifecycleEvent(
            experiment_id=state.experiment_id,
            type=event_type,
            timestamp=self._clock(),
            data=data,
            triggered_by=triggered_by,
        )
        append_event(state, event, self.settings.history_limit)
        return event

    def _transition_failed(
        self,
        state: LifecycleState,
        event_type: EventType,
        transition: str,
        exc: Exception,
        triggered_by: TriggeredBy,
        extra: dict[str, Any] | None = None,
        propagate: bool | None = None,
    ) -> None:
        """Record a ``*_failed`` event; re-raise for operator-triggered calls."""
        cause = str(exc) or type(exc).__name__
        self._record(state, event_type, {"error": cause, **(extra or {})}, triggered_by)
        self._repository.save_state(state)
        transitions_total.labels(transition=transition.replace(" ", "_"), status="failed").inc()
        logger.error(
            "Transition failed",
            experiment_id=state.experiment_id,
            transition=transition,
            error=cause,
        )
        if propagate is None:
            propagate = triggered_by == TriggeredBy.USER
        if propagate:
            raise TransitionFailedError(state.experiment_id, transition, cause) from exc

    async def _call_store(self, call: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(call, timeout=self.settings.store_timeout_seconds)

    async def _get_experiment(self, experiment_id: str) -> Experiment:
        experiment = await self._call_store(self._store.get_experiment(experiment_id))
        if experiment is None:
            raise ExperimentNotFoundError(f"Experiment {experiment_id} not found")
        return experiment

    async def _notify(
        self, config: LifecycleConfig, event: NotificationEvent, data: dict[str, Any]
    ) -> None:
        if self._notifier is None or not config.notifications.subscribes_to(event):
            return
        try:
            await self._notifier.send(config.experiment_id, event, data, config.notifications)
        except Exception as exc:
            logger.warning(
                "Notification failed",
                experiment_id=config.experiment_id,
                notification=event.value,
                error=str(exc),
            )

    async def _log_audit(
        self,
        experiment_id: str,
        action: str,
        *,
        old_value: Any,
        new_value: Any,
        actor: str,
        reason: str = "",
    ) -> None:
        entry = AuditEntry(
            entity_id=experiment_id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            actor=actor,
            reason=reason,
            timestamp=self._clock(),
        )
        try:
            await self._audit.log_change(entry)
        except Exception as exc:
            logger.warning("Audit log failed", experiment_id=experiment_id, error=str(exc))


def _total_steps(config: LifecycleConfig) -> int:
    return len(config.rollout.steps) if config.rollout.enabled else 0


def _restored_flag(config: LifecycleConfig) -> FlagUpdate:
    """Flag settings for a fresh start after a rollback.

    With a rollout the first step sets the percentage; without one the
    experiment goes back to full traffic.
    """
    if _total_steps(config) > 0:
        return FlagUpdate(enabled=True)
    return FlagUpdate(enabled=True, rollout_percentage=100)


_SEVERITY_ORDER = ("info", "warning", "error", "critical")


def _severity_rank(alert: LifecycleAlert) -> int:
    return _SEVERITY_ORDER.index(alert.severity.value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
