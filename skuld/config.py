"""Application configuration via pydantic-settings."""

from __future__ import annotations

import os
import socket
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_worker_id() -> str:
    """Generate a unique worker ID from hostname + PID."""
    return f"{socket.gethostname()}-{os.getpid()}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Control loop
    tick_interval_seconds: float = 60.0
    analytics_timeout_seconds: float = 10.0
    store_timeout_seconds: float = 10.0

    # Lifecycle policy
    history_limit: int = 100
    health_penalty: int = 20
    business_hours_start: int = 9
    business_hours_end: int = 17

    # Collaborator services (optional; empty means offline mode)
    experiment_service_url: str = ""
    experiment_service_token: str = ""
    analytics_service_url: str = ""
    analytics_service_token: str = ""

    # Notification channels (optional)
    slack_webhook_url: str = ""
    notification_webhook_url: str = ""

    # Data directory
    data_dir: Path = Path("./data")

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # API server
    api_host: str = "127.0.0.1"
    api_port: int = 8000
    api_run_ticker: bool = True

    # Huey settings
    huey_immediate: bool = False

    # Cross-process coordination: a worker holds an experiment lease while it works on it
    worker_id: str = Field(default_factory=_default_worker_id)
    lease_ttl_seconds: float = 300.0
    lease_wait_seconds: float = 30.0
    lease_poll_seconds: float = 0.05

    @property
    def db_path(self) -> Path:
        return self.data_dir / "skuld.db"

    @property
    def huey_db_path(self) -> Path:
        return self.data_dir / "huey_queue.db"

    def ensure_data_dir(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
