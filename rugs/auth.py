"""HTTP Basic authentication gate in front of the rugs core.

Two credentials are configured: ``user`` (read access) and ``ci`` (read
and write access).  A role with no credential configured is open.  The
role needed to annotate a change is a deployment choice
(``annotate_role``: write, read or none).
"""

from __future__ import annotations

import logging
from enum import Enum

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from rugs.config import AuthSettings, Credential

logger = logging.getLogger(__name__)

_basic = HTTPBasic(auto_error=False, realm="rugs")


class Role(str, Enum):
    READ = "read"
    WRITE = "write"
    NONE = "none"


# ------------------------------------------------------------------
# Module-level state (configured once during app startup)
# ------------------------------------------------------------------


class _AuthState:
    """Holds the runtime auth settings.

    ``settings`` is ``None`` until ``setup_auth()`` runs; until then every
    request is let through.
    """

    def __init__(self) -> None:
        self.settings: AuthSettings | None = None


auth_state = _AuthState()


def setup_auth(settings: AuthSettings) -> None:
    """Install *settings*; called once during the FastAPI lifespan."""
    auth_state.settings = settings
    if settings.user is None:
        logger.warning("No user credential configured: read access is open")
    if settings.ci is None:
        logger.warning("No ci credential configured: write access is open")


def _accepted(settings: AuthSettings, role: Role) -> list[Credential] | None:
    """Credentials that grant *role*, or ``None`` when the role is open."""
    if role is Role.NONE:
        return None
    if role is Role.WRITE:
        return None if settings.ci is None else [settings.ci]
    if settings.user is None:
        return None
    return [c for c in (settings.user, settings.ci) if c is not None]


def check_role(role: Role, credentials: HTTPBasicCredentials | None) -> None:
    """Raise 401 unless *credentials* grant *role*."""
    settings = auth_state.settings
    if settings is None:
        return
    accepted = _accepted(settings, role)
    if accepted is None:
        return
    if credentials is not None:
        for cred in accepted:
            if cred.matches(credentials.username, credentials.password):
                return
        logger.warning(
            "Rejected %s credentials for user %r", role.value, credentials.username
        )
    raise HTTPException(
        status_code=401,
        detail="Authentication required",
        headers={"WWW-Authenticate": 'Basic realm="rugs"'},
    )


# ------------------------------------------------------------------
# FastAPI dependencies
# ------------------------------------------------------------------


async def require_read(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> None:
    check_role(Role.READ, credentials)


async def require_write(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> None:
    check_role(Role.WRITE, credentials)


async def require_annotate(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
) -> None:
    settings = auth_state.settings
    role = Role.WRITE if settings is None else Role(settings.annotate_role)
    check_role(role, credentials)
