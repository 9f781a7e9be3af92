"""OAuth token issuance, refresh, and revocation.

Issued JWTs are stateless to verify, but every access and refresh token
also gets a revocation record keyed by ``jti``.
"""

import logging
from datetime import datetime
from typing import NoReturn

import jwt
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import utcnow
from mia.core.errors import OAuthError
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.types import AccessClaims, IdTokenClaims, RefreshClaims, TokenType
from mia.db.models_oauth import AccessTokenEntity, RefreshTokenEntity
from mia.db.models_user import UserEntity
from mia.db.repo_user import get_user_by_id
from mia.oidc.auth_code import CodeRedemption, redeem_authorization_code
from mia.oidc.client_auth import authenticate_client
from mia.oidc.scopes import parse_scope
from mia.oidc.types import RefreshRequest, TokenGrant, TokenResponse

logger = logging.getLogger(__name__)


def grant_for_user(
    user: UserEntity, *, client_id: str, scope: str, nonce: str | None = None
) -> TokenGrant:
    return TokenGrant(
        client_id=client_id,
        user_id=user.id,
        scope=scope,
        email=user.email,
        email_verified=user.email_verified,
        name=user.name,
        picture=user.picture,
        nonce=nonce,
    )


async def _record_access_token(
    session: AsyncSession, codec: TokenCodec, grant: TokenGrant, now: datetime
) -> str:
    issued = codec.create_access_token(
        AccessClaims(
            sub=grant.user_id,
            client_id=grant.client_id,
            scope=grant.scope,
            email=grant.email,
            name=grant.name,
        ),
        now=now,
    )
    session.add(
        AccessTokenEntity(
            jti=issued.jti,
            client_id=grant.client_id,
            user_id=grant.user_id,
            scope=grant.scope,
            expires_at=issued.expires_at,
        )
    )
    return issued.token


async def _record_refresh_token(
    session: AsyncSession,
    codec: TokenCodec,
    grant: TokenGrant,
    now: datetime,
    parent_jti: str | None = None,
) -> str:
    issued = codec.create_refresh_token(
        RefreshClaims(sub=grant.user_id, client_id=grant.client_id, scope=grant.scope),
        now=now,
    )
    session.add(
        RefreshTokenEntity(
            jti=issued.jti,
            parent_jti=parent_jti,
            client_id=grant.client_id,
            user_id=grant.user_id,
            scope=grant.scope,
            expires_at=issued.expires_at,
        )
    )
    return issued.token


async def issue_tokens(
    session: AsyncSession,
    codec: TokenCodec,
    grant: TokenGrant,
    *,
    now: datetime | None = None,
) -> TokenResponse:
    """Mint access + refresh tokens, plus an id_token when openid was granted."""
    now = now or utcnow()
    access_token = await _record_access_token(session, codec, grant, now)
    refresh_token = await _record_refresh_token(session, codec, grant, now)
    id_token = None
    if "openid" in parse_scope(grant.scope):
        id_token = codec.create_id_token(
            IdTokenClaims(
                sub=grant.user_id,
                email=grant.email,
                email_verified=grant.email_verified,
                name=grant.name,
                picture=grant.picture,
            ),
            client_id=grant.client_id,
            nonce=grant.nonce,
            now=now,
        )
    await session.flush()
    logger.info("Issued tokens to client %s for user %s", grant.client_id, grant.user_id)
    return TokenResponse(
        access_token=access_token,
        expires_in=codec.access_ttl,
        refresh_token=refresh_token,
        id_token=id_token,
        scope=grant.scope,
    )


async def exchange_authorization_code(
    session: AsyncSession,
    codec: TokenCodec,
    redemption: CodeRedemption,
    *,
    allow_plain: bool = False,
    now: datetime | None = None,
) -> TokenResponse:
    """Handle the authorization_code grant."""
    now = now or utcnow()
    await authenticate_client(session, redemption.client_id, redemption.client_secret)
    code = await redeem_authorization_code(
        session, redemption, allow_plain=allow_plain, now=now
    )
    user = await get_user_by_id(session, code.user_id)
    if user is None or not user.is_active:
        raise OAuthError("invalid_grant", "User not found")
    grant = grant_for_user(
        user, client_id=code.client_id, scope=code.scope, nonce=code.nonce
    )
    return await issue_tokens(session, codec, grant, now=now)


async def get_access_token_record(
    session: AsyncSession, jti: str
) -> AccessTokenEntity | None:
    stmt = select(AccessTokenEntity).where(AccessTokenEntity.jti == jti)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_refresh_token_record(
    session: AsyncSession, jti: str
) -> RefreshTokenEntity | None:
    stmt = select(RefreshTokenEntity).where(RefreshTokenEntity.jti == jti)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def revoke_refresh_chain(
    session: AsyncSession, jti: str, *, now: datetime | None = None
) -> int:
    """Revoke a refresh token and every token rotated from it."""
    now = now or utcnow()
    revoked = 0
    frontier = [jti]
    while frontier:
        stmt = (
            update(RefreshTokenEntity)
            .where(
                RefreshTokenEntity.jti.in_(frontier),
                RefreshTokenEntity.revoked_at.is_(None),
            )
            .values(revoked_at=now)
        )
        result = await session.execute(stmt)
        revoked += result.rowcount
        children = await session.execute(
            select(RefreshTokenEntity.jti).where(
                RefreshTokenEntity.parent_jti.in_(frontier)
            )
        )
        frontier = list(children.scalars().all())
    return revoked


async def _retire_refresh_token(
    session: AsyncSession, jti: str, now: datetime
) -> bool:
    """Revoke a rotated-out token; False if another request already did."""
    stmt = (
        update(RefreshTokenEntity)
        .where(
            RefreshTokenEntity.jti == jti,
            RefreshTokenEntity.revoked_at.is_(None),
        )
        .values(revoked_at=now)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def _reject_reuse(session: AsyncSession, jti: str, now: datetime) -> NoReturn:
    count = await revoke_refresh_chain(session, jti, now=now)
    logger.warning(
        "Revoked refresh token %s presented; revoked %d descendants", jti, count
    )
    raise OAuthError("invalid_grant", "Refresh token has been revoked")


async def refresh_access_token(
    session: AsyncSession,
    codec: TokenCodec,
    request: RefreshRequest,
    *,
    rotate: bool = False,
    now: datetime | None = None,
) -> TokenResponse:
    """Handle the refresh_token grant.

    Only the intersection of the requested and originally granted scopes is
    issued. With ``rotate`` the presented token is revoked and replaced by a
    child; presenting a revoked token revokes its whole chain.
    """
    now = now or utcnow()
    try:
        claims = codec.verify(request.refresh_token, TokenType.REFRESH)
    except jwt.InvalidTokenError as exc:
        raise OAuthError("invalid_grant", "Invalid or expired refresh token") from exc

    if request.client_id and claims.client_id != request.client_id:
        raise OAuthError("invalid_grant", "Client ID mismatch")
    await authenticate_client(session, claims.client_id, request.client_secret)

    record = await get_refresh_token_record(session, claims.jti)
    if record is None:
        raise OAuthError("invalid_grant", "Unknown refresh token")
    if record.revoked_at is not None:
        await _reject_reuse(session, record.jti, now)

    user = await get_user_by_id(session, claims.sub)
    if user is None or not user.is_active:
        raise OAuthError("invalid_grant", "User not found")

    original = parse_scope(claims.scope)
    scopes = original
    if request.scope:
        scopes = [s for s in parse_scope(request.scope) if s in original]
    grant = grant_for_user(user, client_id=claims.client_id, scope=" ".join(scopes))

    if rotate and not await _retire_refresh_token(session, record.jti, now):
        await _reject_reuse(session, record.jti, now)

    access_token = await _record_access_token(session, codec, grant, now)
    record.last_used_at = now
    refresh_token = None
    if rotate:
        refresh_token = await _record_refresh_token(
            session, codec, grant, now, parent_jti=record.jti
        )
    await session.flush()
    logger.info("Refreshed access token for user %s", user.id)
    return TokenResponse(
        access_token=access_token,
        expires_in=codec.access_ttl,
        refresh_token=refresh_token,
        scope=grant.scope,
    )


async def revoke_token(
    session: AsyncSession, codec: TokenCodec, token: str
) -> bool:
    """Revoke an access or refresh token by its jti (RFC 7009).

    Returns False for tokens we did not sign or do not track; callers
    respond 200 either way.
    """
    claims = codec.inspect(token)
    if claims is None or not claims.jti:
        return False
    now = utcnow()
    if claims.type == TokenType.REFRESH:
        return await revoke_refresh_chain(session, claims.jti, now=now) > 0
    stmt = (
        update(AccessTokenEntity)
        .where(
            AccessTokenEntity.jti == claims.jti,
            AccessTokenEntity.revoked_at.is_(None),
        )
        .values(revoked_at=now)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def revoke_user_tokens(session: AsyncSession, user_id: str) -> None:
    """Revoke every outstanding access and refresh token of a user."""
    now = utcnow()
    for model in (AccessTokenEntity, RefreshTokenEntity):
        stmt = (
            update(model)
            .where(model.user_id == user_id, model.revoked_at.is_(None))
            .values(revoked_at=now)
        )
        await session.execute(stmt)
    logger.info("Revoked all tokens of user %s", user_id)
