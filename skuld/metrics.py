"""Prometheus metric definitions for the lifecycle controller."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# --- Check cycles ---

check_cycles_total = Counter(
    "skuld_check_cycles_total",
    "Total check cycles by outcome",
    labelnames=["outcome"],
)

check_cycle_duration_seconds = Histogram(
    "skuld_check_cycle_duration_seconds",
    "Time spent in one experiment check cycle",
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

ticks_total = Counter(
    "skuld_ticks_total",
    "Total global scheduler ticks",
)

# --- Transitions ---

transitions_total = Counter(
    "skuld_transitions_total",
    "Lifecycle transitions attempted",
    labelnames=["transition", "status"],
)

# --- Alerts ---

alerts_total = Counter(
    "skuld_alerts_total",
    "Health-check alerts raised",
    labelnames=["severity"],
)

# --- Per-experiment gauges ---

experiment_health_score = Gauge(
    "skuld_experiment_health_score",
    "Latest health score (0-100)",
    labelnames=["experiment_id"],
)

experiment_rollout_percentage = Gauge(
    "skuld_experiment_rollout_percentage",
    "Rollout percentage last applied to the experiment's flag",
    labelnames=["experiment_id"],
)

# --- Notifications ---

notifications_total = Counter(
    "skuld_notifications_total",
    "Notification deliveries by channel and outcome",
    labelnames=["channel", "status"],
)
