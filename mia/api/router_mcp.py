"""Resource endpoint: JSON-RPC tool invocation for authenticated agents."""

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse

from mia.api.deps import Brokers, Codec, DbSession, Settings
from mia.api.tools import ToolContext, ToolRegistry
from mia.core.errors import (
    HTTP_BAD_REQUEST,
    HTTP_UNAUTHORIZED,
    BearerAuthError,
    InsufficientScopeError,
)
from mia.oidc.bearer import AuthenticatedPrincipal, authenticate_bearer
from mia.platforms.broker import PlatformBrokerRegistry
from mia.platforms.errors import PlatformTokenError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])

PROTOCOL_VERSION = "2024-11-05"
SERVER_INFO = {"name": "meeting-intelligence", "version": "2.0.0"}

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


def _result(request_id: Any, result: dict[str, Any]) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "result": result, "id": request_id})


def _error(
    request_id: Any, code: int, message: str, status_code: int = 200
) -> JSONResponse:
    return JSONResponse(
        {
            "jsonrpc": "2.0",
            "error": {"code": code, "message": message},
            "id": request_id,
        },
        status_code=status_code,
    )


def _auth_required(exc: BearerAuthError, metadata_url: str) -> JSONResponse:
    challenge = (
        f'Bearer error="invalid_token", '
        f'error_description="{exc.description}", '
        f'resource_metadata="{metadata_url}"'
    )
    return JSONResponse(
        {"error": exc.code, "error_description": exc.description},
        status_code=HTTP_UNAUTHORIZED,
        headers={"WWW-Authenticate": challenge, "Cache-Control": "no-store"},
    )


def _platform_error_result(exc: PlatformTokenError) -> dict[str, Any]:
    """Tool result telling the agent which platform account needs attention."""
    return {
        "isError": True,
        "content": [{"type": "text", "text": exc.message}],
        "structuredContent": exc.to_body(),
    }


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.tools


@router.get("/mcp")
async def mcp_health(settings: Settings) -> dict[str, Any]:
    """GET /mcp -- unauthenticated health and discovery pointers."""
    return {
        **SERVER_INFO,
        "status": "healthy",
        "endpoints": {
            "mcp": settings.resource,
            "oauth": f"{settings.issuer}/.well-known/oauth-protected-resource",
            "openid": f"{settings.issuer}/.well-known/openid-configuration",
        },
    }


@router.post("/mcp", response_model=None)
async def mcp(
    request: Request,
    db: DbSession,
    codec: Codec,
    settings: Settings,
    brokers: Brokers,
    authorization: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """POST /mcp -- JSON-RPC ``initialize``, ``tools/list``, ``tools/call``."""
    try:
        principal = await authenticate_bearer(db, codec, authorization)
    except BearerAuthError as exc:
        logger.info("Resource request rejected: %s", exc.code)
        return _auth_required(
            exc, f"{settings.issuer}/.well-known/oauth-protected-resource"
        )

    try:
        rpc = await request.json()
    except ValueError:
        return _error(None, PARSE_ERROR, "Parse error: Invalid JSON", HTTP_BAD_REQUEST)
    if not isinstance(rpc, dict):
        return _error(None, INVALID_REQUEST, "Invalid request", HTTP_BAD_REQUEST)

    request_id = rpc.get("id")
    method = rpc.get("method")
    tools = get_tool_registry(request)
    if method == "initialize":
        return _result(
            request_id,
            {
                "protocolVersion": PROTOCOL_VERSION,
                "serverInfo": SERVER_INFO,
                "capabilities": {"tools": {}},
            },
        )
    if method == "tools/list":
        return _result(request_id, {"tools": [t.describe() for t in tools.list()]})
    if method == "tools/call":
        params = rpc.get("params") or {}
        if not isinstance(params, dict):
            return _error(request_id, INVALID_PARAMS, "params must be an object")
        return await _call_tool(request_id, params, principal, tools, db, brokers)
    return _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")


async def _call_tool(
    request_id: Any,
    params: dict[str, Any],
    principal: AuthenticatedPrincipal,
    tools: ToolRegistry,
    db: AsyncSession,
    brokers: PlatformBrokerRegistry,
) -> JSONResponse:
    name = params.get("name")
    tool = tools.get(name) if isinstance(name, str) else None
    if tool is None:
        return _error(request_id, INVALID_PARAMS, f"Unknown tool: {name}")
    if not principal.has_all_scopes(tool.required_scopes):
        missing = [s for s in tool.required_scopes if not principal.has_scope(s)]
        raise InsufficientScopeError(missing)

    arguments = params.get("arguments") or {}
    if not isinstance(arguments, dict):
        return _error(request_id, INVALID_PARAMS, "arguments must be an object")

    logger.info("User %s called tool %s", principal.user_id, tool.name)
    ctx = ToolContext(principal=principal, session=db, brokers=brokers)
    try:
        result = await tool.handler(ctx, arguments)
    except PlatformTokenError as exc:
        logger.info(
            "Tool %s failed for user %s: %s on %s",
            tool.name,
            principal.user_id,
            exc.code,
            exc.platform.value,
        )
        return _result(request_id, _platform_error_result(exc))
    return _result(request_id, result)
