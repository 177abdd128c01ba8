"""Lifecycle config, state and transition endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Query

from skuld.api.deps import ControllerDep, DbDep, NotifierDep
from skuld.api.schemas import (
    AckRequest,
    AuditEntryResponse,
    AuditListResponse,
    CreateConfigRequest,
    EventListResponse,
    NotificationListResponse,
    NotificationResponse,
    StateListResponse,
    TickResponse,
    TransitionRequest,
    UpdateConfigRequest,
)
from skuld.errors import ConfigNotFoundError, NotificationNotFoundError
from skuld.models import LifecycleAlert, LifecycleConfig, LifecycleState

router = APIRouter(prefix="/lifecycle", tags=["lifecycle"])


# --- Configs ---


@router.post("/configs", response_model=LifecycleConfig, status_code=201)
async def create_config(body: CreateConfigRequest, controller: ControllerDep) -> LifecycleConfig:
    return await controller.create_config(body.experiment_id, body.config, actor=body.actor)


@router.patch("/configs/{config_id}", response_model=LifecycleConfig)
async def update_config(
    config_id: str, body: UpdateConfigRequest, controller: ControllerDep
) -> LifecycleConfig:
    return await controller.update_config(config_id, body.patch, actor=body.actor)


@router.get("/configs/{config_id}", response_model=LifecycleConfig)
def get_config(config_id: str, db: DbDep) -> LifecycleConfig:
    config = db.get_config(config_id)
    if config is None:
        raise ConfigNotFoundError(f"Lifecycle config {config_id} not found")
    return config


@router.get("/experiments/{experiment_id}/config", response_model=LifecycleConfig)
def get_experiment_config(experiment_id: str, controller: ControllerDep) -> LifecycleConfig:
    config = controller.get_config(experiment_id)
    if config is None:
        raise ConfigNotFoundError(f"No lifecycle config for experiment {experiment_id}")
    return config


# --- State ---


@router.get("/states", response_model=StateListResponse)
def list_states(controller: ControllerDep, status: str | None = None) -> StateListResponse:
    states = controller.list_states()
    if status:
        states = [s for s in states if s.status.value == status]
    return StateListResponse(states=states, total=len(states))


@router.get("/experiments/{experiment_id}/state", response_model=LifecycleState)
def get_state(experiment_id: str, controller: ControllerDep) -> LifecycleState:
    state = controller.get_state(experiment_id)
    if state is None:
        raise ConfigNotFoundError(f"No lifecycle state for experiment {experiment_id}")
    return state


@router.get("/experiments/{experiment_id}/events", response_model=EventListResponse)
def list_events(
    experiment_id: str,
    controller: ControllerDep,
    limit: int = Query(default=50, ge=0, le=1000),
) -> EventListResponse:
    events = controller.list_events(experiment_id, limit)
    return EventListResponse(events=events, total=len(events))


@router.get("/experiments/{experiment_id}/audit", response_model=AuditListResponse)
def list_audit(
    experiment_id: str,
    db: DbDep,
    limit: int = Query(default=100, ge=1, le=1000),
) -> AuditListResponse:
    entries = [AuditEntryResponse(**e) for e in db.get_audit_entries(experiment_id, limit)]
    return AuditListResponse(entries=entries, total=len(entries))


# --- Transitions ---


@router.post("/experiments/{experiment_id}/start", response_model=LifecycleState)
async def start(
    experiment_id: str, controller: ControllerDep, body: TransitionRequest | None = None
) -> LifecycleState:
    actor = body.actor if body else "user"
    return await controller.start(experiment_id, actor=actor)


@router.post("/experiments/{experiment_id}/pause", response_model=LifecycleState)
async def pause(
    experiment_id: str, controller: ControllerDep, body: TransitionRequest | None = None
) -> LifecycleState:
    body = body or TransitionRequest()
    return await controller.pause(experiment_id, reason=body.reason, actor=body.actor)


@router.post("/experiments/{experiment_id}/stop", response_model=LifecycleState)
async def stop(
    experiment_id: str, controller: ControllerDep, body: TransitionRequest | None = None
) -> LifecycleState:
    body = body or TransitionRequest()
    return await controller.stop(experiment_id, reason=body.reason, actor=body.actor)


@router.post("/experiments/{experiment_id}/rollback", response_model=LifecycleState)
async def rollback(
    experiment_id: str, controller: ControllerDep, body: TransitionRequest | None = None
) -> LifecycleState:
    body = body or TransitionRequest()
    return await controller.rollback(experiment_id, reason=body.reason, actor=body.actor)


@router.post("/experiments/{experiment_id}/advance", response_model=LifecycleState)
async def advance_rollout(
    experiment_id: str, controller: ControllerDep, body: TransitionRequest | None = None
) -> LifecycleState:
    actor = body.actor if body else "user"
    return await controller.advance_rollout(experiment_id, actor=actor)


@router.post(
    "/experiments/{experiment_id}/alerts/{alert_id}/ack", response_model=LifecycleAlert
)
async def acknowledge_alert(
    experiment_id: str,
    alert_id: str,
    controller: ControllerDep,
    body: AckRequest | None = None,
) -> LifecycleAlert:
    actor = body.actor if body else "user"
    return await controller.acknowledge_alert(experiment_id, alert_id, actor=actor)


# --- Control loop and inbox ---


@router.post("/tick", response_model=TickResponse)
async def tick(controller: ControllerDep) -> TickResponse:
    """Run one control-loop scan immediately."""
    return TickResponse(serviced=await controller.tick())


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    notifier: NotifierDep,
    experiment_id: str | None = None,
    unread_only: bool = False,
) -> NotificationListResponse:
    items = notifier.inbox(experiment_id, unread_only)
    return NotificationListResponse(
        notifications=[
            NotificationResponse(
                id=n.id,
                experiment_id=n.experiment_id,
                event=n.event.value,
                message=n.message,
                severity=n.severity,
                read=n.read,
                created_at=n.created_at.isoformat(),
            )
            for n in items
        ],
        total=len(items),
    )


@router.post("/notifications/{notification_id}/read")
def mark_notification_read(notification_id: str, notifier: NotifierDep) -> dict[str, bool]:
    if not notifier.mark_read(notification_id):
        raise NotificationNotFoundError(f"Notification {notification_id} not found")
    return {"read": True}
