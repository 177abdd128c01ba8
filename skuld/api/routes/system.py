"""Health check and config endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError

from skuld import __version__
from skuld.api.deps import DbDep, SettingsDep
from skuld.api.schemas import ConfigCheckResponse, HealthResponse

router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse)
def health_check(
    db: DbDep,
) -> HealthResponse:
    try:
        db.check_connection()
        db_ok = True
    except SQLAlchemyError:
        db_ok = False

    return HealthResponse(
        status="healthy" if db_ok else "unhealthy",
        version=__version__,
        db_connected=db_ok,
    )


@router.get("/config/check", response_model=ConfigCheckResponse)
def config_check(
    settings: SettingsDep,
) -> ConfigCheckResponse:
    return ConfigCheckResponse(
        configured={
            "experiment_service": bool(settings.experiment_service_url),
            "analytics_service": bool(settings.analytics_service_url),
            "slack": bool(settings.slack_webhook_url),
            "webhook": bool(settings.notification_webhook_url),
        }
    )
