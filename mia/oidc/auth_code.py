"""Authorization code creation and redemption with PKCE."""

import logging
import secrets
from datetime import datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import is_expired, utcnow
from mia.core.errors import OAuthError
from mia.db.models_oauth import AuthorizationCodeEntity
from mia.oidc.pkce import S256, verify_pkce

logger = logging.getLogger(__name__)

AUTH_CODE_TTL_SECONDS = 600


class AuthCodeParams(BaseModel):
    """Parameters for creating an authorization code."""

    client_id: str
    user_id: str
    redirect_uri: str
    scope: str
    nonce: str | None = None
    code_challenge: str
    code_challenge_method: str = S256
    ttl_seconds: int = AUTH_CODE_TTL_SECONDS


class CodeRedemption(BaseModel):
    """Token-endpoint parameters presented with an authorization code."""

    code: str
    client_id: str
    redirect_uri: str
    code_verifier: str
    client_secret: str | None = None


def generate_code() -> str:
    """Generate a cryptographically random authorization code (256 bits)."""
    return secrets.token_urlsafe(32)


async def create_authorization_code(
    session: AsyncSession, params: AuthCodeParams, *, now: datetime | None = None
) -> str:
    """Create and store a new authorization code."""
    now = now or utcnow()
    code = generate_code()
    entity = AuthorizationCodeEntity(
        code=code,
        client_id=params.client_id,
        user_id=params.user_id,
        redirect_uri=params.redirect_uri,
        scope=params.scope,
        nonce=params.nonce,
        code_challenge=params.code_challenge,
        code_challenge_method=params.code_challenge_method,
        expires_at=now + timedelta(seconds=params.ttl_seconds),
    )
    session.add(entity)
    await session.flush()
    return code


async def _mark_used(session: AsyncSession, code: str, now: datetime) -> bool:
    stmt = (
        update(AuthorizationCodeEntity)
        .where(
            AuthorizationCodeEntity.code == code,
            AuthorizationCodeEntity.used_at.is_(None),
            AuthorizationCodeEntity.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def redeem_authorization_code(
    session: AsyncSession,
    redemption: CodeRedemption,
    *,
    allow_plain: bool = False,
    now: datetime | None = None,
) -> AuthorizationCodeEntity:
    """Validate and consume a code. Raises ``OAuthError(invalid_grant)``.

    The code is only burned once every check passed, by a conditional
    update; a concurrent redemption that loses the race is rejected.
    """
    now = now or utcnow()
    stmt = select(AuthorizationCodeEntity).where(
        AuthorizationCodeEntity.code == redemption.code
    )
    result = await session.execute(stmt)
    entity = result.scalar_one_or_none()

    if entity is None:
        raise OAuthError("invalid_grant", "Invalid authorization code")
    if entity.used_at is not None:
        logger.warning("Replay of used authorization code for client %s", entity.client_id)
        raise OAuthError("invalid_grant", "Authorization code already used")
    if is_expired(entity.expires_at, now):
        raise OAuthError("invalid_grant", "Authorization code expired")
    if entity.client_id != redemption.client_id:
        raise OAuthError("invalid_grant", "Client ID mismatch")
    if entity.redirect_uri != redemption.redirect_uri:
        raise OAuthError("invalid_grant", "Redirect URI mismatch")
    if not verify_pkce(
        redemption.code_verifier,
        entity.code_challenge,
        entity.code_challenge_method,
        allow_plain=allow_plain,
    ):
        raise OAuthError("invalid_grant", "Invalid code_verifier")

    if not await _mark_used(session, redemption.code, now):
        raise OAuthError("invalid_grant", "Authorization code already used")
    return entity
