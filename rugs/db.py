"""Async SQLAlchemy database layer.

Two engines share one SQLite file:

* the **write engine** opens every transaction with ``BEGIN IMMEDIATE`` so
  the database write lock is held from the first statement on;
* the **read engine** uses a deferred ``BEGIN``; under WAL the first SELECT
  pins a snapshot that lasts until the session ends.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

DEFAULT_BUSY_TIMEOUT = 30.0

# ------------------------------------------------------------------
# Engines & session factories
# ------------------------------------------------------------------

_engine: AsyncEngine | None = None
_read_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None
_read_session_factory: async_sessionmaker[AsyncSession] | None = None


def _create_engine(url: str, begin_sql: str, busy_timeout: float) -> AsyncEngine:
    engine = create_async_engine(
        url, echo=False, connect_args={"timeout": busy_timeout}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
        # Hand transaction control to the "begin" hook below.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql(begin_sql)

    return engine


def configure(db_path: Path, busy_timeout: float = DEFAULT_BUSY_TIMEOUT) -> None:
    """Set the database path and create the async engines."""
    global _engine, _read_engine, _session_factory, _read_session_factory
    from rugs import projects

    url = f"sqlite+aiosqlite:///{db_path}"
    _engine = _create_engine(url, "BEGIN IMMEDIATE", busy_timeout)
    _read_engine = _create_engine(url, "BEGIN", busy_timeout)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    _read_session_factory = async_sessionmaker(_read_engine, expire_on_commit=False)
    # project ids cached for a previous database are meaningless here
    projects.clear_cache()
    logger.debug("Database configured at %s", db_path)


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not configured – call db.configure() first")
    return _session_factory


def _get_read_session_factory() -> async_sessionmaker[AsyncSession]:
    if _read_session_factory is None:
        raise RuntimeError("Database not configured – call db.configure() first")
    return _read_session_factory


@asynccontextmanager
async def session() -> AsyncIterator[AsyncSession]:
    """Yield a write session; commits on success, rolls back on error."""
    factory = _get_session_factory()
    async with factory() as sess:
        yield sess
        await sess.commit()


@asynccontextmanager
async def read_session() -> AsyncIterator[AsyncSession]:
    """Yield a read-only session bound to one snapshot of the database."""
    factory = _get_read_session_factory()
    # Closing the session ends the snapshot; loaded rows stay readable.
    async with factory() as sess:
        yield sess


# ------------------------------------------------------------------
# Alembic helpers
# ------------------------------------------------------------------

_BADGE_SLOT = {"project_id", "build_type", "change_number"}

_ALEMBIC_DIR = str(Path(__file__).resolve().parent.parent / "alembic")


def _run_alembic_upgrade(connection: Any) -> None:
    """Synchronous helper executed inside ``run_sync``."""
    from sqlalchemy import inspect as sa_inspect

    from alembic import command
    from alembic.config import Config
    from alembic.migration import MigrationContext

    cfg = Config()
    cfg.set_main_option("script_location", _ALEMBIC_DIR)
    cfg.attributes["connection"] = connection

    # A schema created by external tooling has the tables but no
    # alembic_version row: adopt it as-is.
    ctx = MigrationContext.configure(connection)
    if ctx.get_current_revision() is None:
        inspector = sa_inspect(connection)
        if "badges" in set(inspector.get_table_names()):
            if not _has_badge_slot_key(inspector):
                logger.error("Unversioned badges table lacks the slot unique key")
                raise RuntimeError(
                    "existing badges table has no unique (project_id, build_type, "
                    "change_number) key; migrate it before starting rugs"
                )
            logger.info("Existing schema without alembic revision, stamping head")
            command.stamp(cfg, "head")
            return

    command.upgrade(cfg, "head")


def _has_badge_slot_key(inspector: Any) -> bool:
    """True if ``badges`` carries the unique key the upserts conflict on."""
    keys = [c["column_names"] for c in inspector.get_unique_constraints("badges")]
    keys += [
        i["column_names"] for i in inspector.get_indexes("badges") if i.get("unique")
    ]
    return any(set(cols) == _BADGE_SLOT for cols in keys)


async def init_db() -> None:
    """Apply pending Alembic migrations to bring the database up to date."""
    if _engine is None:
        raise RuntimeError("Database not configured – call db.configure() first")
    async with _engine.begin() as conn:
        await conn.run_sync(_run_alembic_upgrade)


async def dispose() -> None:
    """Dispose of the engines and reset module state."""
    global _engine, _read_engine, _session_factory, _read_session_factory
    for engine in (_engine, _read_engine):
        if engine is not None:
            await engine.dispose()
    _engine = None
    _read_engine = None
    _session_factory = None
    _read_session_factory = None
