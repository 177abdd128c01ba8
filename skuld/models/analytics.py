"""Shapes exchanged with the experiment store, analytics engine and audit sink."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from skuld.models.base import utcnow


class Experiment(BaseModel):
    """The store's view of an experiment. Owned by the experiment/flag store."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    status: str = "draft"
    flag_id: str
    started_at: datetime | None = None


class FlagUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool | None = None
    rollout_percentage: float | None = Field(default=None, ge=0, le=100)


class ExperimentMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    overall_conversion_rate: float = 0.0
    total_participants: int = 0
    error_rate: float = 0.0
    response_time: float = 0.0


class BusinessImpact(BaseModel):
    model_config = ConfigDict(frozen=True)

    roi: float = 0.0
    revenue_impact: float = 0.0


class Winner(BaseModel):
    model_config = ConfigDict(frozen=True)

    variant_name: str
    confidence: float


class StatisticalAnalysis(BaseModel):
    model_config = ConfigDict(frozen=True)

    winner: Winner | None = None


class ExperimentAnalytics(BaseModel):
    """Snapshot returned by the analytics engine for one experiment."""

    model_config = ConfigDict(frozen=True)

    experiment_id: str
    metrics: ExperimentMetrics = Field(default_factory=ExperimentMetrics)
    business_impact: BusinessImpact = Field(default_factory=BusinessImpact)
    statistical_analysis: StatisticalAnalysis = Field(default_factory=StatisticalAnalysis)
    generated_at: datetime = Field(default_factory=utcnow)


class ExperimentReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    experiment_id: str
    executive_summary: str = ""


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    entity_id: str
    action: str
    old_value: Any = None
    new_value: Any = None
    actor: str
    reason: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
