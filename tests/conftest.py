"""Shared fixtures for the rugs test suite."""

from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from rugs import db, projects
from rugs.auth import auth_state
from rugs.config import AuthSettings, Credential

PROJECT = "//myproject/main/MyProject"

USER_AUTH = ("user", "personal_secret")
CI_AUTH = ("ci", "more_secreter_secret")


# ---------------------------------------------------------------------------
# Temporary database
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "metadata.db"


@pytest_asyncio.fixture()
async def initialized_db(db_path: Path):
    """Configure rugs.db against a fresh temp file and run the migrations."""
    db.configure(db_path, busy_timeout=30.0)
    await db.init_db()
    yield db_path
    await db.dispose()
    projects.clear_cache()


# ---------------------------------------------------------------------------
# Auth state
# ---------------------------------------------------------------------------


@pytest.fixture()
def open_auth():
    """No credentials configured: every role is open."""
    original = auth_state.settings
    auth_state.settings = AuthSettings()
    yield auth_state.settings
    auth_state.settings = original


@pytest.fixture()
def locked_auth():
    """Both credentials configured; annotating needs the write role."""
    original = auth_state.settings
    auth_state.settings = AuthSettings(
        user=Credential(*USER_AUTH),
        ci=Credential(*CI_AUTH),
        annotate_role="write",
    )
    yield auth_state.settings
    auth_state.settings = original


# ---------------------------------------------------------------------------
# Async HTTP test client (uses the real FastAPI app)
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture()
async def client(initialized_db: Path, open_auth):
    """Async httpx client wired to the FastAPI app (no lifespan)."""
    import main as app_module

    transport = ASGITransport(app=app_module.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def locked_client(initialized_db: Path, locked_auth):
    import main as app_module

    transport = ASGITransport(app=app_module.app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
