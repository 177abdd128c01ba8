"""API request/response schemas (separate from domain models)."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from skuld.models import LifecycleConfigBody, LifecycleEvent, LifecycleState

# --- Requests ---


class CreateConfigRequest(BaseModel):
    experiment_id: str = Field(min_length=1)
    config: LifecycleConfigBody = Field(default_factory=LifecycleConfigBody)
    actor: str = "user"


class UpdateConfigRequest(BaseModel):
    patch: dict[str, Any]
    actor: str = "user"


class TransitionRequest(BaseModel):
    reason: str = ""
    actor: str = "user"


class AckRequest(BaseModel):
    actor: str = "user"


# --- Responses ---


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str
    version: str
    db_connected: bool


class ConfigCheckResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    configured: dict[str, bool]


class StateListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    states: list[LifecycleState]
    total: int


class EventListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    events: list[LifecycleEvent]
    total: int


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    entity_id: str
    action: str
    old_value: Any
    new_value: Any
    actor: str
    reason: str
    created_at: str


class AuditListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    entries: list[AuditEntryResponse]
    total: int


class NotificationResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    experiment_id: str
    event: str
    message: str
    severity: str
    read: bool
    created_at: str


class NotificationListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    notifications: list[NotificationResponse]
    total: int


class TickResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    serviced: int
