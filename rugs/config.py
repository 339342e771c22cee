"""Declarative configuration for rugs.

Parses a TOML config file and provides:

* Server settings (data directory, database file, log level, whether the
  schema is migrated at startup, SQLite busy timeout).
* The two HTTP Basic credentials (``user`` for read access, ``ci`` for
  write access) and the role required to annotate changes.

The config file is the **single source of truth** when present.
Environment variables (``RUGS_*``) are honoured when no file exists.
"""

from __future__ import annotations

import hmac
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

ANNOTATE_ROLES = ("write", "read", "none")

_ph = PasswordHasher()

# ------------------------------------------------------------------
# Data classes
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """A ``name:secret`` pair.

    The secret is either plain text or an argon2 hash (``$argon2id$...``),
    e.g. produced with ``PasswordHasher().hash("secret")``.
    """

    username: str
    secret: str = field(repr=False)

    @classmethod
    def parse(cls, raw: str, what: str = "credential") -> Credential:
        if not isinstance(raw, str) or ":" not in raw:
            raise ValueError(f"{what} must look like 'name:secret'")
        username, secret = raw.split(":", 1)
        if not username or not secret:
            raise ValueError(f"{what} must look like 'name:secret'")
        return cls(username=username, secret=secret)

    @property
    def hashed(self) -> bool:
        return self.secret.startswith("$argon2")

    def matches(self, username: str, password: str) -> bool:
        """Constant-time check of a presented username/password pair."""
        user_ok = hmac.compare_digest(
            self.username.encode("utf-8"), username.encode("utf-8")
        )
        if self.hashed:
            try:
                password_ok = _ph.verify(self.secret, password)
            except (VerificationError, InvalidHashError):
                password_ok = False
        else:
            password_ok = hmac.compare_digest(
                self.secret.encode("utf-8"), password.encode("utf-8")
            )
        return user_ok and password_ok


@dataclass(frozen=True)
class ServerConfig:
    data_dir: Path = Path(".")
    db_path: Path | None = None
    log_level: str = "INFO"
    migrate_on_startup: bool = True
    busy_timeout: float = 30.0

    @property
    def database_path(self) -> Path:
        if self.db_path is not None:
            return self.db_path
        return self.data_dir / "metadata.db"


@dataclass(frozen=True)
class AuthSettings:
    user: Credential | None = None
    ci: Credential | None = None
    annotate_role: str = "write"


# ------------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------------


def _as_bool(value: Any, what: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off", ""):
            return False
    raise ValueError(f"{what} must be a boolean, got {value!r}")


def _server_from(data: Mapping[str, Any]) -> ServerConfig:
    data_dir = Path(str(data.get("data_dir", "."))).expanduser()
    raw_db = data.get("db_path") or None
    db_path = None if raw_db is None else Path(str(raw_db)).expanduser()
    if db_path is not None and not db_path.is_absolute():
        db_path = data_dir / db_path

    busy_timeout = float(data.get("busy_timeout", 30.0))
    if busy_timeout <= 0:
        raise ValueError("busy_timeout must be positive")

    return ServerConfig(
        data_dir=data_dir,
        db_path=db_path,
        log_level=str(data.get("log_level", "INFO")).upper(),
        migrate_on_startup=_as_bool(
            data.get("migrate_on_startup", True), "migrate_on_startup"
        ),
        busy_timeout=busy_timeout,
    )


def _auth_from(data: Mapping[str, Any]) -> AuthSettings:
    user = data.get("user") or None
    ci = data.get("ci") or None
    role = str(data.get("annotate_role", "write")).strip().lower()
    if role not in ANNOTATE_ROLES:
        raise ValueError(
            f"annotate_role {role!r} is invalid; use one of {', '.join(ANNOTATE_ROLES)}"
        )
    return AuthSettings(
        user=None if user is None else Credential.parse(user, "auth.user"),
        ci=None if ci is None else Credential.parse(ci, "auth.ci"),
        annotate_role=role,
    )


# ------------------------------------------------------------------
# ConfigManager
# ------------------------------------------------------------------


class ConfigManager:
    """Holds the parsed configuration.

    Typical usage::

        cfg = ConfigManager.load()
        db.configure(cfg.server.database_path, cfg.server.busy_timeout)
    """

    def __init__(self, server: ServerConfig, auth: AuthSettings) -> None:
        self._server = server
        self._auth = auth

    # -------------------------------------------------------------- factories

    @classmethod
    def from_file(cls, path: Path) -> ConfigManager:
        """Load configuration from a TOML file."""
        with open(path, "rb") as f:
            raw = tomllib.load(f)
        return cls._from_dict(raw)

    @classmethod
    def from_str(cls, toml_str: str) -> ConfigManager:
        """Load configuration from a TOML string (handy for tests)."""
        return cls._from_dict(tomllib.loads(toml_str))

    @classmethod
    def _from_dict(cls, raw: dict[str, Any]) -> ConfigManager:
        server = raw.get("server", {})
        auth = raw.get("auth", {})
        if not isinstance(server, dict) or not isinstance(auth, dict):
            raise ValueError("[server] and [auth] must be tables")
        return cls(_server_from(server), _auth_from(auth))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ConfigManager:
        """Build the configuration from ``RUGS_*`` environment variables.

        Environment variables
        ---------------------
        RUGS_DATA                : data directory (default: ".")
        RUGS_DB_PATH             : database file (default: <data>/metadata.db)
        RUGS_LOG_LEVEL           : logging level name (default: INFO)
        RUGS_MIGRATE_ON_STARTUP  : "true" / "false" (default: true)
        RUGS_BUSY_TIMEOUT        : seconds to wait for the write lock (default: 30)
        RUGS_USER_AUTH           : "name:secret" for read access
        RUGS_CI_AUTH             : "name:secret" for write access
        RUGS_ANNOTATE_ROLE       : write / read / none (default: write)
        """
        env = os.environ if environ is None else environ
        server = {
            "data_dir": env.get("RUGS_DATA", "."),
            "db_path": env.get("RUGS_DB_PATH", ""),
            "log_level": env.get("RUGS_LOG_LEVEL", "INFO"),
            "migrate_on_startup": env.get("RUGS_MIGRATE_ON_STARTUP", "true"),
            "busy_timeout": env.get("RUGS_BUSY_TIMEOUT", "30"),
        }
        auth = {
            "user": env.get("RUGS_USER_AUTH", ""),
            "ci": env.get("RUGS_CI_AUTH", ""),
            "annotate_role": env.get("RUGS_ANNOTATE_ROLE", "write"),
        }
        return cls(_server_from(server), _auth_from(auth))

    @classmethod
    def default(cls) -> ConfigManager:
        """Open access, database in the working directory."""
        return cls(ServerConfig(), AuthSettings())

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> ConfigManager:
        """Load the TOML file named by ``RUGS_CONF``, else fall back to env vars."""
        path = resolve_config_path(environ)
        if path.is_file():
            return cls.from_file(path)
        return cls.from_env(environ)

    # -------------------------------------------------------------- accessors

    @property
    def server(self) -> ServerConfig:
        return self._server

    @property
    def auth(self) -> AuthSettings:
        return self._auth


def resolve_config_path(environ: Mapping[str, str] | None = None) -> Path:
    """Return the TOML config file path.

    ``RUGS_CONF`` may point to either a file or a directory.  When it is a
    directory we look for ``config.toml`` inside it.
    """
    env = os.environ if environ is None else environ
    raw = env.get("RUGS_CONF", "")
    if raw:
        p = Path(raw)
        if p.is_dir():
            return p / "config.toml"
        return p
    return Path(env.get("RUGS_DATA", ".")) / "config.toml"
