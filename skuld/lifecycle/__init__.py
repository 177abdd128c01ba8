"""Lifecycle package: controller, rule evaluators, scheduling and history."""

from skuld.lifecycle.controller import SYSTEM_ACTOR, LifecycleController
from skuld.lifecycle.evaluators import HealthVerdict, RolloutDecision
from skuld.lifecycle.repository import InMemoryLifecycleRepository
from skuld.lifecycle.schedule import BusinessHours

__all__ = [
    "SYSTEM_ACTOR",
    "BusinessHours",
    "HealthVerdict",
    "InMemoryLifecycleRepository",
    "LifecycleController",
    "RolloutDecision",
]
