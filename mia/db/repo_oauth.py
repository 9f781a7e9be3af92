"""Repository for OAuth clients, pending authorization requests, and consents."""

import logging
import secrets
from datetime import datetime, timedelta

import uuid_utils
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import as_utc, utcnow
from mia.crypto.password import hash_password
from mia.db.models_oauth import (
    CONFIDENTIAL_CLIENT,
    DEFAULT_CLIENT_SCOPES,
    PUBLIC_CLIENT,
    AuthorizationRequestEntity,
    ConsentEntity,
    OAuthClientEntity,
)

logger = logging.getLogger(__name__)


async def get_client(
    session: AsyncSession, client_id: str, *, active_only: bool = True
) -> OAuthClientEntity | None:
    """Look up an OAuth client by ID (active clients only by default)."""
    stmt = select(OAuthClientEntity).where(OAuthClientEntity.id == client_id)
    if active_only:
        stmt = stmt.where(OAuthClientEntity.is_active.is_(True))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def register_public_client(
    session: AsyncSession,
    client_id: str,
    redirect_uri: str,
    *,
    client_name: str = "ChatGPT",
    allowed_scopes: str = DEFAULT_CLIENT_SCOPES,
) -> OAuthClientEntity:
    """Create a public (secretless) client bound to one redirect URI."""
    client = OAuthClientEntity(
        id=client_id,
        client_name=client_name,
        client_type=PUBLIC_CLIENT,
        redirect_uris=[redirect_uri],
        allowed_scopes=allowed_scopes,
        is_active=True,
    )
    session.add(client)
    await session.flush()
    logger.info("Auto-registered public client %s", client_id)
    return client


async def register_confidential_client(
    session: AsyncSession,
    client_id: str,
    client_secret: str,
    redirect_uris: list[str],
    *,
    client_name: str,
    allowed_scopes: str = DEFAULT_CLIENT_SCOPES,
) -> OAuthClientEntity:
    """Pre-provision a client that authenticates with a secret (stored hashed)."""
    client = OAuthClientEntity(
        id=client_id,
        client_secret_hash=hash_password(client_secret),
        client_name=client_name,
        client_type=CONFIDENTIAL_CLIENT,
        redirect_uris=list(redirect_uris),
        allowed_scopes=allowed_scopes,
        is_active=True,
    )
    session.add(client)
    await session.flush()
    logger.info("Registered confidential client %s", client_id)
    return client


def validate_redirect_uri(client: OAuthClientEntity, redirect_uri: str) -> bool:
    """Check that redirect_uri is registered for this client."""
    return redirect_uri in (client.redirect_uris or [])


async def add_redirect_uri(
    session: AsyncSession, client: OAuthClientEntity, redirect_uri: str
) -> None:
    """Register an additional redirect URI; a no-op if already present."""
    if validate_redirect_uri(client, redirect_uri):
        return
    # Reassign so the JSON column is marked dirty.
    client.redirect_uris = [*(client.redirect_uris or []), redirect_uri]
    await session.flush()


class AuthorizationRequestData(BaseModel):
    """Validated /authorize parameters to hold until consent."""

    client_id: str
    redirect_uri: str
    scope: str
    state: str | None = None
    nonce: str | None = None
    code_challenge: str
    code_challenge_method: str = "S256"


async def create_authorization_request(
    session: AsyncSession,
    data: AuthorizationRequestData,
    *,
    ttl_seconds: int,
    now: datetime | None = None,
) -> AuthorizationRequestEntity:
    now = now or utcnow()
    entity = AuthorizationRequestEntity(
        id=secrets.token_urlsafe(32),
        expires_at=now + timedelta(seconds=ttl_seconds),
        **data.model_dump(),
    )
    session.add(entity)
    await session.flush()
    return entity


async def get_pending_authorization_request(
    session: AsyncSession, request_id: str, *, now: datetime | None = None
) -> AuthorizationRequestEntity | None:
    """Return the request if it is unconsumed and unexpired."""
    now = now or utcnow()
    stmt = select(AuthorizationRequestEntity).where(
        AuthorizationRequestEntity.id == request_id
    )
    result = await session.execute(stmt)
    entity = result.scalar_one_or_none()
    if entity is None or entity.consumed_at is not None:
        return None
    if now >= as_utc(entity.expires_at):
        return None
    return entity


async def consume_authorization_request(
    session: AsyncSession, request_id: str, *, now: datetime | None = None
) -> bool:
    """Atomically mark a pending request consumed. False if someone else won."""
    now = now or utcnow()
    stmt = (
        update(AuthorizationRequestEntity)
        .where(
            AuthorizationRequestEntity.id == request_id,
            AuthorizationRequestEntity.consumed_at.is_(None),
            AuthorizationRequestEntity.expires_at > now,
        )
        .values(consumed_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def get_consent(
    session: AsyncSession, user_id: str, client_id: str
) -> ConsentEntity | None:
    stmt = select(ConsentEntity).where(
        ConsentEntity.user_id == user_id,
        ConsentEntity.client_id == client_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_consent(
    session: AsyncSession,
    user_id: str,
    client_id: str,
    scopes: list[str],
    *,
    now: datetime | None = None,
) -> ConsentEntity:
    """Grant ``scopes`` on top of any unrevoked standing consent."""
    now = now or utcnow()
    existing = await get_consent(session, user_id, client_id)
    if existing is None:
        entity = ConsentEntity(
            id=str(uuid_utils.uuid7()),
            user_id=user_id,
            client_id=client_id,
            scope=" ".join(scopes),
            consented_at=now,
        )
        session.add(entity)
        await session.flush()
        return entity

    granted = existing.scope.split() if existing.revoked_at is None else []
    for scope in scopes:
        if scope not in granted:
            granted.append(scope)
    existing.scope = " ".join(granted)
    existing.consented_at = now
    existing.revoked_at = None
    await session.flush()
    return existing


async def revoke_consent(
    session: AsyncSession, user_id: str, client_id: str
) -> bool:
    """Withdraw a standing consent. Returns False if there was none."""
    existing = await get_consent(session, user_id, client_id)
    if existing is None or existing.revoked_at is not None:
        return False
    existing.revoked_at = utcnow()
    await session.flush()
    logger.info("Revoked consent of user %s for client %s", user_id, client_id)
    return True
