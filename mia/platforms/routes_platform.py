"""Third-party connect flow and connection management endpoints."""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Body, Query
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from mia.api.deps import Brokers, DbSession, Principal
from mia.core.errors import OAuthError
from mia.core.urls import with_query
from mia.db.repo_platform import deactivate_connection, list_connections
from mia.platforms.connect import InvalidStateError, complete_connect, start_connect
from mia.platforms.errors import PlatformTokenError
from mia.platforms.types import Platform

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["platforms"])

HTTP_NOT_FOUND = 404


class ConnectRequest(BaseModel):
    redirect_after: str | None = None


class ConnectResponse(BaseModel):
    ok: bool = True
    url: str


class ConnectionInfo(BaseModel):
    """A connection as shown to its owner; never includes token material."""

    platform: Platform
    scope: str | None = None
    expires_at: datetime | None = None
    connected_at: datetime
    last_used_at: datetime | None = None


class ConnectionList(BaseModel):
    connections: list[ConnectionInfo]


def _is_local_path(value: str) -> bool:
    return value.startswith("/") and not value.startswith("//")


def _error_redirect(platform: Platform, error: str) -> RedirectResponse:
    return RedirectResponse(
        with_query(f"/auth/{platform.value}/error", {"error": error}),
        status_code=302,
    )


@router.post("/auth/{platform}")
async def connect_platform(
    platform: Platform,
    principal: Principal,
    db: DbSession,
    brokers: Brokers,
    payload: Annotated[ConnectRequest | None, Body()] = None,
) -> ConnectResponse:
    """POST /api/auth/{platform} -- begin connecting a platform account."""
    redirect_after = payload.redirect_after if payload else None
    if redirect_after and not _is_local_path(redirect_after):
        raise OAuthError("invalid_request", "redirect_after must be a local path")
    url = await start_connect(
        db, brokers, principal.user_id, platform, redirect_after
    )
    return ConnectResponse(url=url)


@router.get("/auth/{platform}/callback", response_model=None)
async def connect_callback(
    platform: Platform,
    db: DbSession,
    brokers: Brokers,
    code: Annotated[str | None, Query()] = None,
    state: Annotated[str | None, Query()] = None,
    error: Annotated[str | None, Query()] = None,
) -> RedirectResponse:
    """GET /api/auth/{platform}/callback -- provider redirects here."""
    if error:
        logger.info("%s authorization was declined: %s", platform.value, error)
        return _error_redirect(platform, error)
    if not code or not state:
        return _error_redirect(platform, "missing_parameters")
    try:
        _conn, redirect_after = await complete_connect(
            db, brokers, platform, code, state
        )
    except InvalidStateError:
        return _error_redirect(platform, "invalid_state")
    except PlatformTokenError as exc:
        return _error_redirect(platform, exc.code)
    return RedirectResponse(
        redirect_after or f"/auth/{platform.value}/success", status_code=302
    )


@router.get("/connections")
async def get_connections(principal: Principal, db: DbSession) -> ConnectionList:
    """GET /api/connections -- the caller's active platform connections."""
    connections = await list_connections(db, principal.user_id)
    return ConnectionList(
        connections=[
            ConnectionInfo(
                platform=c.platform,
                scope=c.scope,
                expires_at=c.expires_at,
                connected_at=c.connected_at,
                last_used_at=c.last_used_at,
            )
            for c in connections
        ]
    )


@router.delete("/connections/{platform}", response_model=None)
async def disconnect_platform(
    platform: Platform, principal: Principal, db: DbSession
) -> JSONResponse:
    """DELETE /api/connections/{platform} -- soft-disconnect a platform."""
    if not await deactivate_connection(db, principal.user_id, platform):
        return JSONResponse(
            {"error": "not_connected", "platform": platform.value},
            status_code=HTTP_NOT_FOUND,
        )
    logger.info("User %s disconnected %s", principal.user_id, platform.value)
    return JSONResponse({"ok": True, "platform": platform.value})
