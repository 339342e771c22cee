"""Alembic environment configuration.

Supports two modes:
* **CLI** – ``alembic upgrade head`` migrates the database named by
  ``sqlalchemy.url`` in ``alembic.ini``, or, when that is left empty, the
  database the rugs configuration points at (``RUGS_CONF`` / ``RUGS_*``).
* **Programmatic** – ``rugs.db.init_db()`` passes a live connection via
  ``config.attributes["connection"]`` so that migrations run inside the
  application's write transaction.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import create_engine, pool

from alembic import context
from rugs.config import ConfigManager
from rugs.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _database_url() -> str:
    url = config.get_main_option("sqlalchemy.url")
    if url:
        return url
    return f"sqlite:///{ConfigManager.load().server.database_path}"


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL without a live connection)."""
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (against a real database)."""
    connection = config.attributes.get("connection", None)

    if connection is not None:
        # Programmatic call – reuse the connection handed to us by rugs.db.
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()
        return

    connectable = create_engine(_database_url(), poolclass=pool.NullPool)
    with connectable.connect() as conn:
        context.configure(
            connection=conn,
            target_metadata=target_metadata,
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
