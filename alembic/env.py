"""Migration environment for the skuld lifecycle database.

``sqlalchemy.url`` from alembic.ini (or ``set_main_option``) wins; without
one the database under ``Settings.data_dir`` is migrated. SQLite cannot
ALTER most columns, so every migration runs in batch mode.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context

from skuld.config import Settings
from skuld.db.orm import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

_SQLITE_PREFIX = "sqlite:///"


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return f"{_SQLITE_PREFIX}{Settings().db_path}"


def _run(**options) -> None:
    context.configure(target_metadata=target_metadata, render_as_batch=True, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout."""
    _run(url=_database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})


def run_migrations_online() -> None:
    """Migrate through the same engine factory the application uses."""
    from skuld.db.engine import create_db_engine

    # sqlite:///relative.db and sqlite:////abs/path.db both strip to a usable path
    engine = create_db_engine(_database_url().removeprefix(_SQLITE_PREFIX))
    try:
        with engine.connect() as connection:
            _run(connection=connection)
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
