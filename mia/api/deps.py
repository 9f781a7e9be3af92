"""FastAPI dependencies shared by the OAuth, platform, and resource routes.

Components are constructed once in ``create_app`` and read from
``app.state``; tests swap them through ``dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.settings import AuthSettings
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.keys import KeyManager
from mia.db.engine import get_session
from mia.oidc.bearer import AuthenticatedPrincipal, authenticate_bearer
from mia.platforms.broker import PlatformBrokerRegistry


def get_settings(request: Request) -> AuthSettings:
    return request.app.state.settings


def get_keys(request: Request) -> KeyManager:
    return request.app.state.keys


def get_codec(request: Request) -> TokenCodec:
    return request.app.state.codec


def get_broker_registry(request: Request) -> PlatformBrokerRegistry:
    return request.app.state.brokers


DbSession = Annotated[AsyncSession, Depends(get_session)]
Settings = Annotated[AuthSettings, Depends(get_settings)]
Keys = Annotated[KeyManager, Depends(get_keys)]
Codec = Annotated[TokenCodec, Depends(get_codec)]
Brokers = Annotated[PlatformBrokerRegistry, Depends(get_broker_registry)]


async def get_principal(
    db: DbSession,
    codec: Codec,
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedPrincipal:
    """Authenticate the request's bearer access token."""
    return await authenticate_bearer(db, codec, authorization)


Principal = Annotated[AuthenticatedPrincipal, Depends(get_principal)]
