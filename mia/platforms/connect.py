"""Connecting a user's third-party account (provider authorization code flow)."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import utcnow
from mia.db.models_platform import PlatformConnectionEntity
from mia.db.repo_platform import StoredTokens, consume_state, create_state, upsert_connection
from mia.oidc.pkce import compute_s256_challenge, create_code_verifier
from mia.platforms.broker import PlatformBrokerRegistry
from mia.platforms.types import Platform

logger = logging.getLogger(__name__)


class InvalidStateError(Exception):
    """Connect callback state is unknown, expired, or already used."""


async def start_connect(
    session: AsyncSession,
    registry: PlatformBrokerRegistry,
    user_id: str,
    platform: Platform,
    redirect_after: str | None = None,
) -> str:
    """Persist a connect state and return the provider authorize URL."""
    client = registry.oauth_client(platform)
    state = secrets.token_urlsafe(16)
    verifier = create_code_verifier()
    await create_state(
        session,
        state=state,
        platform=platform,
        user_id=user_id,
        code_verifier=verifier,
        redirect_after=redirect_after,
    )
    logger.info("User %s started connecting %s", user_id, platform.value)
    return client.build_authorization_url(state, compute_s256_challenge(verifier))


async def complete_connect(
    session: AsyncSession,
    registry: PlatformBrokerRegistry,
    platform: Platform,
    code: str,
    state: str,
) -> tuple[PlatformConnectionEntity, str | None]:
    """Consume the state, exchange the code, and store encrypted tokens.

    Returns the connection and the ``redirect_after`` recorded at start.
    Raises ``InvalidStateError`` or ``PlatformTokenError``.
    """
    stored = await consume_state(session, state, platform)
    if stored is None:
        raise InvalidStateError("Invalid or expired state")

    client = registry.oauth_client(platform)
    tokens = await client.exchange_code(code, stored.code_verifier)

    cipher = registry.cipher
    expires_at = None
    if tokens.expires_in is not None:
        expires_at = utcnow() + timedelta(seconds=tokens.expires_in)
    conn = await upsert_connection(
        session,
        stored.user_id,
        platform,
        StoredTokens(
            access_token=cipher.encrypt(tokens.access_token),
            refresh_token=(
                cipher.encrypt(tokens.refresh_token) if tokens.refresh_token else None
            ),
            expires_at=expires_at,
            scope=tokens.scope,
            token_type=tokens.token_type,
        ),
    )
    logger.info("User %s connected %s", stored.user_id, platform.value)
    return conn, stored.redirect_after
