"""FastAPI test client fixtures."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from skuld.api.app import include_routes
from skuld.api.middleware import CorrelationIdMiddleware, add_exception_handlers
from skuld.notifications import NotificationDispatcher
from skuld.wiring import build_controller

if TYPE_CHECKING:
    from collections.abc import Iterator

    from skuld.config import Settings
    from skuld.db import Database


def _create_test_app(db: Database, settings: Settings) -> FastAPI:
    """Create a FastAPI app with injected test db/settings (no lifespan).

    The test settings leave every service URL empty, so the controller runs
    against the offline clients.
    """
    app = FastAPI(title="Skuld Test")

    notifier = NotificationDispatcher()
    app.state.db = db
    app.state.settings = settings
    app.state.notifier = notifier
    app.state.controller = build_controller(settings, db, notifier)

    app.add_middleware(CorrelationIdMiddleware)
    add_exception_handlers(app)
    include_routes(app)

    return app


@pytest.fixture()
def settings(settings: Settings) -> Settings:
    # Requests blocked by another worker's lease fail fast
    return settings.model_copy(update={"lease_wait_seconds": 0.1})


@pytest.fixture()
def client(db: Database, settings: Settings) -> Iterator[TestClient]:
    app = _create_test_app(db, settings)
    with TestClient(app) as client:
        yield client


@pytest.fixture()
def created_client(client: TestClient) -> TestClient:
    """Client with a draft lifecycle config for ``exp_1``."""
    resp = client.post(
        "/api/v1/lifecycle/configs",
        json={
            "experiment_id": "exp_1",
            "config": {
                "rollout": {
                    "enabled": True,
                    "steps": [{"percentage": 25}, {"percentage": 100}],
                },
                "notifications": {
                    "enabled": True,
                    "channels": ["in_app"],
                    "events": ["started", "rolled_back"],
                },
            },
            "actor": "alice",
        },
    )
    assert resp.status_code == 201
    return client
