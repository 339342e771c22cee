from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.exc import OperationalError

from rugs import db, projects, sync
from rugs.auth import require_annotate, require_read, require_write, setup_auth
from rugs.badges import publish_badge
from rugs.config import ConfigManager
from rugs.errors import ValidationError
from rugs.models import Badge, UserEvent
from rugs.user_events import UserEventPatch, annotate_change

logger = logging.getLogger("rugs.main")

# Module-level ConfigManager (populated during lifespan)
config_manager: ConfigManager | None = None

# Version reported by /api/latest
METADATA_VERSION = 2

# ----------------------------
# DTOs (no Pydantic)
# ----------------------------


def _require_key(data: dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise HTTPException(status_code=422, detail=f"{key} is required")
    return data[key]


@dataclass(frozen=True, slots=True)
class CreateBadgeDTO:
    """Body of ``POST /api/build`` as sent by CI."""

    project: str
    build_type: str
    change_number: int
    result: Any
    url: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CreateBadgeDTO":
        return cls(
            project=_require_key(data, "Project"),
            build_type=_require_key(data, "BuildType"),
            change_number=_require_key(data, "ChangeNumber"),
            result=_require_key(data, "Result"),
            url=data.get("Url") or "",
        )


_PATCH_KEYS = {
    "Vote": "vote",
    "Investigating": "investigating",
    "Starred": "starred",
    "Comment": "comment",
}


@dataclass(frozen=True, slots=True)
class UpdateMetadataDTO:
    """Body of ``POST /api/metadata`` as sent by the UGS client.

    Only the annotation keys present in the body end up in ``patch``.
    """

    depot_path: str
    user_name: str
    change_number: int
    patch: UserEventPatch

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UpdateMetadataDTO":
        project = _require_key(data, "Project")
        depot_path = projects.join_depot_path(data.get("Stream") or "", project)
        fields = {
            attr: data[key] for key, attr in _PATCH_KEYS.items() if key in data
        }
        patch = UserEventPatch.build(synced=data.get("Synced", False), **fields)
        return cls(
            depot_path=depot_path,
            user_name=_require_key(data, "UserName"),
            change_number=_require_key(data, "Change"),
            patch=patch,
        )


async def _json_object(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=422, detail="JSON body must be an object")
    return payload


# ----------------------------
# Response rendering
# ----------------------------


def _iso(ts: int) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def badge_to_v1(badge: Badge, project: str) -> dict[str, Any]:
    return {
        "Id": badge.sequence,
        "ChangeNumber": badge.change_number,
        "AddedAt": _iso(badge.added_at),
        "BuildType": badge.build_type,
        "Result": badge.result,
        "Url": badge.url,
        "Project": project,
    }


def user_event_to_v2(event: UserEvent) -> dict[str, Any]:
    vote = event.user_vote
    return {
        "User": event.user_name,
        "SyncTime": event.synced_at,
        "Vote": None if vote is None else vote.label,
        "Comment": event.comment or "",
        "Investigating": event.investigating,
        "Starred": event.starred,
    }


def metadata_list_v2(result: sync.SyncResult, project: str) -> dict[str, Any]:
    """Group a sync result per change number, as the UGS client expects."""
    items: dict[int, dict[str, Any]] = {}
    for entry in result.entries():
        item = items.setdefault(
            entry.change_number,
            {
                "Change": entry.change_number,
                "Project": project,
                "Users": [],
                "Badges": [],
            },
        )
        if entry.kind == "badge":
            badge = entry.record
            item["Badges"].append(
                {"Name": badge.build_type, "Url": badge.url, "State": badge.result}
            )
        else:
            item["Users"].append(user_event_to_v2(entry.record))
    return {
        "SequenceNumber": result.max_sequence,
        "Items": [items[change] for change in sorted(items)],
    }


# ----------------------------
# Lifespan (async startup)
# ----------------------------


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    global config_manager

    config_manager = ConfigManager.load()
    server = config_manager.server
    _configure_logging(server.log_level)

    server.database_path.parent.mkdir(parents=True, exist_ok=True)
    db.configure(server.database_path, server.busy_timeout)
    if server.migrate_on_startup:
        await db.init_db()
    else:
        logger.info("Schema migrations disabled; using the existing schema")

    setup_auth(config_manager.auth)
    logger.info("rugs ready, database %s", server.database_path)
    yield
    await db.dispose()


# ----------------------------
# App setup
# ----------------------------

app = FastAPI(
    title="rugs metadata server",
    version="0.5",
    lifespan=lifespan,
)


@app.middleware("http")
async def _log_requests(request: Request, call_next) -> Response:  # noqa: ANN001
    started = time.monotonic()
    response = await call_next(request)
    logger.debug(
        "%s %s -> %d (%.1f ms)",
        request.method,
        request.url.path,
        response.status_code,
        (time.monotonic() - started) * 1000,
    )
    return response


@app.exception_handler(ValidationError)
async def _validation_failed(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(OperationalError)
async def _storage_unavailable(
    request: Request, exc: OperationalError
) -> JSONResponse:
    logger.error(
        "Storage error on %s %s", request.method, request.url.path, exc_info=exc
    )
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


_read = [Depends(require_read)]

# ----------------------------
# Routes
# ----------------------------


@app.get("/")
async def root() -> RedirectResponse:
    return RedirectResponse(url="/docs")


@app.get("/health")
async def health() -> Response:
    """Liveness check for containers and reverse proxies; no auth."""
    return Response(status_code=200)


@app.get("/api/latest", dependencies=_read)
async def latest(project: str) -> dict[str, Any]:
    return {
        "Version": METADATA_VERSION,
        "LastEventId": 0,
        "LastCommentId": 0,
        "LastBuildId": await sync.latest_sequence(project),
    }


@app.get("/api/build", dependencies=_read)
async def build_index(project: str, lastbuildid: int = 0) -> list[dict[str, Any]]:
    result = await sync.sync(project, since_sequence=lastbuildid)
    return [badge_to_v1(b, project) for b in result.badges]


@app.post("/api/build", dependencies=[Depends(require_write)])
@app.post("/api/Build", dependencies=[Depends(require_write)], include_in_schema=False)
async def build_create(request: Request) -> Response:
    dto = CreateBadgeDTO.from_dict(await _json_object(request))
    await publish_badge(
        dto.project, dto.build_type, dto.change_number, dto.result, dto.url
    )
    return Response(status_code=200)


@app.get("/api/metadata", dependencies=_read)
async def metadata_index(
    project: str,
    stream: str = "",
    minchange: int = 0,
    maxchange: int | None = None,
    sequence: int = 0,
) -> dict[str, Any]:
    depot_path = projects.join_depot_path(stream, project)
    result = await sync.sync(
        depot_path, min_change=minchange, max_change=maxchange, since_sequence=sequence
    )
    return metadata_list_v2(result, project)


@app.post("/api/metadata", dependencies=[Depends(require_annotate)])
async def metadata_update(request: Request) -> Response:
    dto = UpdateMetadataDTO.from_dict(await _json_object(request))
    await annotate_change(dto.depot_path, dto.user_name, dto.change_number, dto.patch)
    return Response(status_code=200)


# Legacy endpoints polled by older clients; nothing is stored for them.


@app.get("/api/event", dependencies=_read)
async def event_index() -> list[Any]:
    return []


@app.get("/api/comment", dependencies=_read)
async def comment_index() -> list[Any]:
    return []


@app.get("/api/issues", dependencies=_read)
async def issue_index() -> list[Any]:
    return []


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=3000)
