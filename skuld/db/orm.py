"""SQLAlchemy ORM models mapping to the lifecycle tables."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import CheckConstraint, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _timestamp_str(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _utcnow_str() -> str:
    return _timestamp_str(datetime.now(UTC))


class Base(DeclarativeBase):
    pass


class LifecycleConfigRow(Base):
    __tablename__ = "lifecycle_configs"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    experiment_id: Mapped[str] = mapped_column(Text, nullable=False)
    config_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)

    __table_args__ = (
        UniqueConstraint("experiment_id", name="uq_lifecycle_configs_experiment"),
    )


class LifecycleStateRow(Base):
    __tablename__ = "lifecycle_states"

    experiment_id: Mapped[str] = mapped_column(Text, primary_key=True)
    status: Mapped[str] = mapped_column(Text, nullable=False, default="draft")
    health: Mapped[str] = mapped_column(Text, nullable=False, default="healthy")
    state_json: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'running', 'paused', 'completed', 'failed')",
            name="ck_lifecycle_states_status",
        ),
        Index("idx_lifecycle_states_status", "status"),
    )


class LifecycleAuditRow(Base):
    __tablename__ = "lifecycle_audit"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_id: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    old_value_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    new_value_json: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    actor: Mapped[str] = mapped_column(Text, nullable=False, default="")
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)

    __table_args__ = (Index("idx_lifecycle_audit_entity", "entity_id"),)


class LifecycleLeaseRow(Base):
    """Which worker may currently mutate an experiment, and until when."""

    __tablename__ = "lifecycle_leases"

    experiment_id: Mapped[str] = mapped_column(Text, primary_key=True)
    worker_id: Mapped[str] = mapped_column(Text, nullable=False)
    acquired_at: Mapped[str] = mapped_column(Text, nullable=False, default=_utcnow_str)
    expires_at: Mapped[str] = mapped_column(Text, nullable=False)
