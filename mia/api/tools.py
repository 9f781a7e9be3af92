"""Tool registry for the resource endpoint and the built-in status tool."""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from mia.db.repo_platform import list_connections
from mia.oidc.bearer import AuthenticatedPrincipal
from mia.platforms.broker import PlatformBrokerRegistry
from mia.platforms.errors import PlatformTokenError
from mia.platforms.types import Platform

logger = logging.getLogger(__name__)


class ToolContext(BaseModel):
    """What a tool handler may use to serve one call."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    principal: AuthenticatedPrincipal
    session: AsyncSession
    brokers: PlatformBrokerRegistry


ToolHandler = Callable[[ToolContext, dict[str, Any]], Awaitable[dict[str, Any]]]


class Tool(BaseModel):
    """A callable tool and the scopes its caller must hold."""

    name: str
    description: str
    required_scopes: list[str] = Field(default_factory=list)
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    annotations: dict[str, bool] = Field(default_factory=dict)
    handler: ToolHandler = Field(exclude=True)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
            "annotations": self.annotations,
        }


class ToolRegistry:
    """Named tools exposed through ``tools/list`` and ``tools/call``."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        return list(self._tools.values())


async def get_connection_status(
    ctx: ToolContext, _arguments: dict[str, Any]
) -> dict[str, Any]:
    """Report the caller and the health of each platform connection.

    Each active connection is checked through its broker, which refreshes
    tokens that are about to expire.
    """
    connections = await list_connections(ctx.session, ctx.principal.user_id)
    connected = {c.platform for c in connections}
    platforms: list[dict[str, str]] = []
    for platform in Platform:
        if platform not in connected:
            platforms.append({"platform": platform.value, "status": "not_connected"})
            continue
        broker = ctx.brokers.get(ctx.principal.user_id, platform)
        try:
            await broker.get_access_token()
        except PlatformTokenError as exc:
            logger.info(
                "%s connection of user %s is unhealthy: %s",
                platform.value,
                ctx.principal.user_id,
                exc.code,
            )
            platforms.append({"platform": platform.value, "status": exc.code})
            continue
        platforms.append({"platform": platform.value, "status": "connected"})

    who = ctx.principal.name or ctx.principal.email
    lines = [f"Connected platforms for {who}:"]
    lines.extend(f"- {p['platform']}: {p['status']}" for p in platforms)
    return {
        "content": [{"type": "text", "text": "\n".join(lines)}],
        "structuredContent": {
            "user": {"id": ctx.principal.user_id, "email": ctx.principal.email},
            "platforms": platforms,
        },
    }


def default_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        Tool(
            name="get_connection_status",
            description=(
                "Check which platforms (Zoom, Asana) are connected "
                "and whether their tokens are usable."
            ),
            annotations={
                "readOnlyHint": True,
                "openWorldHint": False,
                "destructiveHint": False,
            },
            handler=get_connection_status,
        )
    )
    return registry
