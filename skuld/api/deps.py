"""FastAPI dependency injection."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from skuld.config import Settings
from skuld.db import Database
from skuld.lifecycle import LifecycleController
from skuld.notifications import NotificationDispatcher


def _get_db(request: Request) -> Database:
    """Get the database instance from app state."""
    return request.app.state.db  # type: ignore[no-any-return]


def _get_settings(request: Request) -> Settings:
    """Get the settings instance from app state."""
    return request.app.state.settings  # type: ignore[no-any-return]


def _get_controller(request: Request) -> LifecycleController:
    return request.app.state.controller  # type: ignore[no-any-return]


def _get_notifier(request: Request) -> NotificationDispatcher:
    return request.app.state.notifier  # type: ignore[no-any-return]


DbDep = Annotated[Database, Depends(_get_db)]
SettingsDep = Annotated[Settings, Depends(_get_settings)]
ControllerDep = Annotated[LifecycleController, Depends(_get_controller)]
NotifierDep = Annotated[NotificationDispatcher, Depends(_get_notifier)]
