"""Audit sinks: where lifecycle changes are recorded for later review."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from skuld.db import Database
    from skuld.models.analytics import AuditEntry

logger = structlog.get_logger()


class StructlogAuditSink:
    """Writes audit entries to the structured log."""

    async def log_change(self, entry: AuditEntry) -> None:
        logger.info(
            "Audit",
            entity_id=entry.entity_id,
            action=entry.action,
            old_value=entry.old_value,
            new_value=entry.new_value,
            actor=entry.actor,
            reason=entry.reason,
        )


class DatabaseAuditSink:
    """Persists audit entries to the ``lifecycle_audit`` table."""

    def __init__(self, db: Database):
        self._db = db

    async def log_change(self, entry: AuditEntry) -> None:
        entry_id = self._db.add_audit_entry(entry)
        logger.debug("Audit entry stored", audit_id=entry_id, action=entry.action)
