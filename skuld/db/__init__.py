"""Database package: engine, ORM models, and the repository facade."""

from skuld.db.engine import create_db_engine, create_session_factory
from skuld.db.facade import AuditEntryDict, Database
from skuld.db.orm import (
    Base,
    LifecycleAuditRow,
    LifecycleConfigRow,
    LifecycleLeaseRow,
    LifecycleStateRow,
)

__all__ = [
    "AuditEntryDict",
    "Base",
    "Database",
    "LifecycleAuditRow",
    "LifecycleConfigRow",
    "LifecycleLeaseRow",
    "LifecycleStateRow",
    "create_db_engine",
    "create_session_factory",
]
