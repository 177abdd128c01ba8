"""Shared helpers for lifecycle models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    """Short random identifier, e.g. ``event_3f9c2a1b7d04``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"
