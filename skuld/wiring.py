"""Builds a ``LifecycleController`` wired to the configured collaborators."""

from __future__ import annotations

from typing import TYPE_CHECKING

from skuld.audit import DatabaseAuditSink
from skuld.clients import AnalyticsClient, ExperimentServiceClient
from skuld.db import Database
from skuld.lifecycle import LifecycleController
from skuld.notifications import NotificationDispatcher

if TYPE_CHECKING:
    from skuld.config import Settings


def open_database(settings: Settings) -> Database:
    settings.ensure_data_dir()
    db = Database(settings.db_path)
    db.init_schema()
    return db


def build_controller(
    settings: Settings,
    db: Database,
    notifier: NotificationDispatcher | None = None,
) -> LifecycleController:
    """Controller backed by *db*, talking to the services named in *settings*.

    Unconfigured services fall back to the clients' offline behaviour.
    """
    return LifecycleController(
        repository=db,
        store=ExperimentServiceClient(
            base_url=settings.experiment_service_url,
            api_token=settings.experiment_service_token,
            timeout=settings.store_timeout_seconds,
        ),
        analytics=AnalyticsClient(
            base_url=settings.analytics_service_url,
            api_token=settings.analytics_service_token,
            timeout=settings.analytics_timeout_seconds,
        ),
        audit=DatabaseAuditSink(db),
        notifier=notifier or NotificationDispatcher.from_settings(settings),
        settings=settings,
    )
