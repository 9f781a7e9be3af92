"""FastAPI application factory for the mia authorization server."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mia.api.router_mcp import router as mcp_router
from mia.api.tools import ToolRegistry, default_registry
from mia.core.errors import (
    BearerAuthError,
    InsufficientScopeError,
    OAuthError,
    bearer_error_handler,
    insufficient_scope_handler,
    oauth_error_handler,
)
from mia.core.log import configure_logging
from mia.core.settings import AuthSettings, DatabaseSettings, PlatformSettings
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.keys import KeyManager
from mia.crypto.token_cipher import TokenCipher
from mia.db.engine import Database
from mia.oidc.routes_authorize import router as authorize_router
from mia.oidc.routes_consent import router as consent_router
from mia.oidc.routes_discovery import router as discovery_router
from mia.oidc.routes_revoke import router as revoke_router
from mia.oidc.routes_token import router as token_router
from mia.oidc.routes_userinfo import router as userinfo_router
from mia.platforms.broker import PlatformBrokerRegistry
from mia.platforms.routes_platform import router as platform_router

logger = logging.getLogger(__name__)


def create_app(
    settings: AuthSettings | None = None,
    *,
    platform_settings: PlatformSettings | None = None,
    database: Database | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
    tools: ToolRegistry | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    Every collaborator is constructed here and stored on ``app.state``.
    Key material and the encryption key are parsed on first use.
    """
    settings = settings or AuthSettings()
    platform_settings = platform_settings or PlatformSettings()
    database = database or Database.from_settings(DatabaseSettings())
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        logger.info("Authorization server starting, issuer %s", settings.issuer)
        yield
        await database.dispose()

    app = FastAPI(
        title="mia authorization server",
        version="0.1.0",
        lifespan=lifespan,
    )

    keys = KeyManager.from_settings(settings)
    cipher = TokenCipher(settings.token_encryption_key)
    app.state.settings = settings
    app.state.database = database
    app.state.keys = keys
    app.state.codec = TokenCodec(
        keys,
        issuer=settings.issuer,
        resource=settings.resource,
        access_ttl=settings.access_token_ttl,
        refresh_ttl=settings.refresh_token_ttl,
    )
    app.state.brokers = PlatformBrokerRegistry(
        session_factory=database.session_factory,
        cipher=cipher,
        platform_settings=platform_settings,
        auth_settings=settings,
        transport=http_transport,
    )
    app.state.tools = tools or default_registry()

    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.add_exception_handler(BearerAuthError, bearer_error_handler)
    app.add_exception_handler(InsufficientScopeError, insufficient_scope_handler)

    origins = settings.get_cors_origin_list()
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Authorization", "Content-Type"],
        )

    app.include_router(discovery_router)
    app.include_router(authorize_router)
    app.include_router(consent_router)
    app.include_router(token_router)
    app.include_router(userinfo_router)
    app.include_router(revoke_router)
    app.include_router(platform_router)
    app.include_router(mcp_router)

    return app
