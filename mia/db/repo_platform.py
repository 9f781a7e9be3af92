"""Repository for platform connections and third-party connect state."""

from datetime import datetime, timedelta

import uuid_utils
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import utcnow
from mia.db.models_platform import OAuthStateEntity, PlatformConnectionEntity
from mia.platforms.types import Platform

OAUTH_STATE_TTL_SECONDS = 600


class StoredTokens(BaseModel):
    """Encrypted token material as persisted."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str | None = None
    token_type: str = "Bearer"


async def get_connection(
    session: AsyncSession,
    user_id: str,
    platform: Platform,
    *,
    for_update: bool = False,
) -> PlatformConnectionEntity | None:
    """Return the active connection, optionally row-locked for update."""
    stmt = select(PlatformConnectionEntity).where(
        PlatformConnectionEntity.user_id == user_id,
        PlatformConnectionEntity.platform == platform,
        PlatformConnectionEntity.is_active.is_(True),
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_connections(
    session: AsyncSession, user_id: str
) -> list[PlatformConnectionEntity]:
    stmt = (
        select(PlatformConnectionEntity)
        .where(
            PlatformConnectionEntity.user_id == user_id,
            PlatformConnectionEntity.is_active.is_(True),
        )
        .order_by(PlatformConnectionEntity.platform)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def upsert_connection(
    session: AsyncSession,
    user_id: str,
    platform: Platform,
    tokens: StoredTokens,
) -> PlatformConnectionEntity:
    """Create or reactivate the (user, platform) connection with new tokens."""
    stmt = select(PlatformConnectionEntity).where(
        PlatformConnectionEntity.user_id == user_id,
        PlatformConnectionEntity.platform == platform,
    )
    result = await session.execute(stmt)
    entity = result.scalar_one_or_none()
    now = utcnow()
    if entity is None:
        entity = PlatformConnectionEntity(
            id=str(uuid_utils.uuid7()),
            user_id=user_id,
            platform=platform,
            connected_at=now,
            **tokens.model_dump(),
        )
        session.add(entity)
    else:
        for field, value in tokens.model_dump().items():
            setattr(entity, field, value)
        entity.is_active = True
        entity.connected_at = now
    await session.flush()
    return entity


def store_tokens(entity: PlatformConnectionEntity, tokens: StoredTokens) -> None:
    """Overwrite token material on a loaded connection after a refresh."""
    entity.access_token = tokens.access_token
    entity.refresh_token = tokens.refresh_token
    entity.expires_at = tokens.expires_at
    entity.scope = tokens.scope
    entity.token_type = tokens.token_type


async def deactivate_connection(
    session: AsyncSession, user_id: str, platform: Platform
) -> bool:
    """Soft-disconnect. Returns False if there was no active connection."""
    stmt = (
        update(PlatformConnectionEntity)
        .where(
            PlatformConnectionEntity.user_id == user_id,
            PlatformConnectionEntity.platform == platform,
            PlatformConnectionEntity.is_active.is_(True),
        )
        .values(is_active=False, updated_at=utcnow())
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


async def create_state(
    session: AsyncSession,
    *,
    state: str,
    platform: Platform,
    user_id: str,
    code_verifier: str,
    redirect_after: str | None = None,
    now: datetime | None = None,
) -> OAuthStateEntity:
    now = now or utcnow()
    entity = OAuthStateEntity(
        state=state,
        platform=platform,
        user_id=user_id,
        code_verifier=code_verifier,
        redirect_after=redirect_after,
        expires_at=now + timedelta(seconds=OAUTH_STATE_TTL_SECONDS),
    )
    session.add(entity)
    await session.flush()
    return entity


async def consume_state(
    session: AsyncSession,
    state: str,
    platform: Platform,
    *,
    now: datetime | None = None,
) -> OAuthStateEntity | None:
    """Atomically mark a connect state used and return it.

    Returns None if the state is unknown, for another platform, expired,
    or was already consumed by a concurrent callback.
    """
    now = now or utcnow()
    stmt = (
        update(OAuthStateEntity)
        .where(
            OAuthStateEntity.state == state,
            OAuthStateEntity.platform == platform,
            OAuthStateEntity.used_at.is_(None),
            OAuthStateEntity.expires_at > now,
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount != 1:
        return None
    found = await session.execute(
        select(OAuthStateEntity)
        .where(OAuthStateEntity.state == state)
        .execution_options(populate_existing=True)
    )
    return found.scalar_one()
