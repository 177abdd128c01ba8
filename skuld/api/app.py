"""FastAPI application factory and entry point."""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI

from skuld import __version__
from skuld.api.middleware import CorrelationIdMiddleware, add_exception_handlers
from skuld.api.routes import lifecycle, system
from skuld.config import Settings
from skuld.logging import configure_logging
from skuld.notifications import NotificationDispatcher
from skuld.wiring import build_controller, open_database

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the DB, build the controller and start the ticker; undo on shutdown."""
    settings = Settings()

    configure_logging(
        log_level=settings.log_level,
        log_format=settings.log_format,
    )

    db = open_database(settings)
    notifier = NotificationDispatcher.from_settings(settings)
    controller = build_controller(settings, db, notifier)

    app.state.db = db
    app.state.settings = settings
    app.state.notifier = notifier
    app.state.controller = controller

    ticker: asyncio.Task[None] | None = None
    if settings.api_run_ticker:
        ticker = asyncio.create_task(controller.run_forever())

    logger.info(
        "Skuld API started",
        host=settings.api_host,
        port=settings.api_port,
        ticker=settings.api_run_ticker,
    )
    yield

    await controller.close()
    if ticker is not None:
        ticker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await ticker
    db.close()
    logger.info("Skuld API shut down")


def include_routes(app: FastAPI) -> None:
    prefix = "/api/v1"
    app.include_router(system.router, prefix=prefix)
    app.include_router(lifecycle.router, prefix=prefix)


def create_app() -> FastAPI:
    """Application factory."""
    app = FastAPI(
        title="Skuld",
        description="Automated experiment lifecycle controller API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationIdMiddleware)
    add_exception_handlers(app)

    # Prometheus metrics endpoint
    from prometheus_client import make_asgi_app

    app.mount("/metrics", make_asgi_app())

    include_routes(app)
    return app


def main() -> None:
    """Entry point for `skuld-api` command."""
    import uvicorn

    settings = Settings()
    uvicorn.run(
        "skuld.api.app:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
    )
