"""SQLAlchemy-backed lifecycle repository and audit log."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, TypedDict

from sqlalchemy import delete, or_, select, text, update
from sqlalchemy.exc import IntegrityError

from skuld.db.engine import create_db_engine, create_session_factory
from skuld.db.orm import (
    Base,
    LifecycleAuditRow,
    LifecycleConfigRow,
    LifecycleLeaseRow,
    LifecycleStateRow,
    _timestamp_str,
    _utcnow_str,
)
from skuld.errors import ConfigNotFoundError, DuplicateConfigError
from skuld.models.config import LifecycleConfig
from skuld.models.state import LifecycleState

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy import Engine
    from sqlalchemy.orm import Session, sessionmaker

    from skuld.models.analytics import AuditEntry


class AuditEntryDict(TypedDict):
    id: int
    entity_id: str
    action: str
    old_value: object
    new_value: object
    actor: str
    reason: str
    created_at: str


class Database:
    """SQLAlchemy-backed implementation of ``LifecycleRepository``.

    Configs and states are stored as JSON documents next to a few indexed
    columns; every read builds fresh pydantic models.
    """

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        self._engine: Engine = create_db_engine(self.db_path)
        self._session_factory: sessionmaker[Session] = create_session_factory(self._engine)

    @property
    def engine(self) -> Engine:
        """Expose the SQLAlchemy engine for inspection and advanced use."""
        return self._engine

    @property
    def Session(self) -> sessionmaker[Session]:  # noqa: N802
        """Expose the session factory for consumers that need direct access."""
        return self._session_factory

    def init_schema(self) -> None:
        """Create all tables via ORM metadata."""
        Base.metadata.create_all(self._engine)

    def close(self) -> None:
        self._engine.dispose()

    def check_connection(self) -> bool:
        """Verify the database is reachable. Returns True or raises."""
        with self._session_factory() as session:
            session.execute(text("SELECT 1"))
        return True

    # --- Configs ---

    def add_config(self, config: LifecycleConfig, state: LifecycleState) -> None:
        with self._session_factory() as session:
            session.add(
                LifecycleConfigRow(
                    id=config.id,
                    experiment_id=config.experiment_id,
                    config_json=config.model_dump_json(),
                    created_at=config.created_at.isoformat(),
                    updated_at=config.updated_at.isoformat(),
                )
            )
            session.add(self._state_to_row(state))
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateConfigError(
                    f"Lifecycle config already exists for experiment {config.experiment_id}"
                ) from exc

    def save_config(self, config: LifecycleConfig) -> None:
        with self._session_factory() as session:
            row = session.get(LifecycleConfigRow, config.id)
            if row is None:
                raise ConfigNotFoundError(f"Lifecycle config {config.id} not found")
            row.config_json = config.model_dump_json()
            row.updated_at = config.updated_at.isoformat()
            session.commit()

    def get_config(self, config_id: str) -> LifecycleConfig | None:
        with self._session_factory() as session:
            row = session.get(LifecycleConfigRow, config_id)
            if row is None:
                return None
            return LifecycleConfig.model_validate_json(row.config_json)

    def get_config_for_experiment(self, experiment_id: str) -> LifecycleConfig | None:
        with self._session_factory() as session:
            row = session.scalars(
                select(LifecycleConfigRow).where(LifecycleConfigRow.experiment_id == experiment_id)
            ).first()
            if row is None:
                return None
            return LifecycleConfig.model_validate_json(row.config_json)

    def list_configs(self) -> list[LifecycleConfig]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(LifecycleConfigRow).order_by(LifecycleConfigRow.created_at)
            ).all()
            return [LifecycleConfig.model_validate_json(r.config_json) for r in rows]

    # --- States ---

    def get_state(self, experiment_id: str) -> LifecycleState | None:
        with self._session_factory() as session:
            row = session.get(LifecycleStateRow, experiment_id)
            if row is None:
                return None
            return LifecycleState.model_validate_json(row.state_json)

    def save_state(self, state: LifecycleState) -> None:
        with self._session_factory() as session:
            row = session.get(LifecycleStateRow, state.experiment_id)
            if row is None:
                raise ConfigNotFoundError(
                    f"No lifecycle state for experiment {state.experiment_id}"
                )
            row.status = state.status.value
            row.health = state.health.value
            row.state_json = state.model_dump_json()
            row.updated_at = _utcnow_str()
            session.commit()

    def list_states(self) -> list[LifecycleState]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(LifecycleStateRow).order_by(LifecycleStateRow.experiment_id)
            ).all()
            return [LifecycleState.model_validate_json(r.state_json) for r in rows]

    @staticmethod
    def _state_to_row(state: LifecycleState) -> LifecycleStateRow:
        return LifecycleStateRow(
            experiment_id=state.experiment_id,
            status=state.status.value,
            health=state.health.value,
            state_json=state.model_dump_json(),
        )

    # --- Leases ---

    def acquire_lease(self, experiment_id: str, holder: str, ttl_seconds: float) -> bool:
        """Take or renew the experiment's lease for *holder*.

        Succeeds when the lease is free, already held by *holder*, or expired.
        The conditional UPDATE and the primary-key INSERT make this atomic
        across processes sharing the database file.
        """
        now = datetime.now(UTC)
        now_str = _timestamp_str(now)
        expires_at = _timestamp_str(now + timedelta(seconds=ttl_seconds))
        with self._session_factory() as session:
            result = session.execute(
                update(LifecycleLeaseRow)
                .where(
                    LifecycleLeaseRow.experiment_id == experiment_id,
                    or_(
                        LifecycleLeaseRow.worker_id == holder,
                        LifecycleLeaseRow.expires_at < now_str,
                    ),
                )
                .values(worker_id=holder, acquired_at=now_str, expires_at=expires_at)
            )
            if result.rowcount == 1:
                session.commit()
                return True

            session.add(
                LifecycleLeaseRow(
                    experiment_id=experiment_id,
                    worker_id=holder,
                    acquired_at=now_str,
                    expires_at=expires_at,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

    def release_lease(self, experiment_id: str, holder: str) -> None:
        with self._session_factory() as session:
            session.execute(
                delete(LifecycleLeaseRow).where(
                    LifecycleLeaseRow.experiment_id == experiment_id,
                    LifecycleLeaseRow.worker_id == holder,
                )
            )
            session.commit()

    # --- Audit ---

    def add_audit_entry(self, entry: AuditEntry) -> int:
        with self._session_factory() as session:
            row = LifecycleAuditRow(
                entity_id=entry.entity_id,
                action=entry.action,
                old_value_json=json.dumps(entry.old_value, default=str),
                new_value_json=json.dumps(entry.new_value, default=str),
                actor=entry.actor,
                reason=entry.reason,
                created_at=entry.timestamp.isoformat(),
            )
            session.add(row)
            session.commit()
            return row.id

    def get_audit_entries(
        self, entity_id: str | None = None, limit: int = 100
    ) -> list[AuditEntryDict]:
        """Newest first."""
        with self._session_factory() as session:
            stmt = select(LifecycleAuditRow).order_by(LifecycleAuditRow.id.desc()).limit(limit)
            if entity_id is not None:
                stmt = stmt.where(LifecycleAuditRow.entity_id == entity_id)
            rows = session.scalars(stmt).all()
            return [
                AuditEntryDict(
                    id=r.id,
                    entity_id=r.entity_id,
                    action=r.action,
                    old_value=json.loads(r.old_value_json),
                    new_value=json.loads(r.new_value_json),
                    actor=r.actor,
                    reason=r.reason,
                    created_at=r.created_at,
                )
                for r in rows
            ]
