"""User and login-session repository."""

import logging
import secrets
from datetime import datetime, timedelta

import uuid_utils
from pydantic import BaseModel, EmailStr
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import is_expired, utcnow
from mia.crypto.password import hash_password, verify_password
from mia.db.models_user import UserEntity, UserSessionEntity

logger = logging.getLogger(__name__)


class UserCreateData(BaseModel):
    """Parameters for creating a user."""

    email: EmailStr
    password: str | None = None
    name: str | None = None
    picture: str | None = None
    email_verified: bool = False


async def get_user_by_email(session: AsyncSession, email: str) -> UserEntity | None:
    """Look up a user by email address (case-insensitive)."""
    stmt = select(UserEntity).where(UserEntity.email == email.lower())
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_by_id(session: AsyncSession, user_id: str) -> UserEntity | None:
    """Look up a user by primary key."""
    stmt = select(UserEntity).where(UserEntity.id == user_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def create_user(session: AsyncSession, data: UserCreateData) -> UserEntity:
    user = UserEntity(
        id=str(uuid_utils.uuid7()),
        email=data.email.lower(),
        email_verified=data.email_verified,
        name=data.name,
        picture=data.picture,
        password_hash=hash_password(data.password) if data.password else None,
        is_active=True,
    )
    session.add(user)
    await session.flush()
    return user


async def verify_credentials(
    session: AsyncSession, email: str, password: str
) -> UserEntity | None:
    """Authenticate a user by email and password."""
    user = await get_user_by_email(session, email)
    hashed = user.password_hash if user is not None else None
    if not verify_password(password, hashed):
        return None
    if user is None or not user.is_active:
        return None
    return user


async def create_login_session(
    session: AsyncSession,
    user_id: str,
    *,
    ttl_seconds: int,
    now: datetime | None = None,
) -> UserSessionEntity:
    """Open a server-side login session referenced by an opaque id."""
    now = now or utcnow()
    entity = UserSessionEntity(
        id=secrets.token_urlsafe(32),
        user_id=user_id,
        expires_at=now + timedelta(seconds=ttl_seconds),
    )
    session.add(entity)
    await session.flush()
    logger.info("Opened login session for user %s", user_id)
    return entity


async def get_login_session(
    session: AsyncSession, session_id: str, *, now: datetime | None = None
) -> UserSessionEntity | None:
    """Return the session if it exists, is unrevoked, and has not expired."""
    stmt = select(UserSessionEntity).where(UserSessionEntity.id == session_id)
    result = await session.execute(stmt)
    entity = result.scalar_one_or_none()
    if entity is None or entity.revoked_at is not None:
        return None
    if is_expired(entity.expires_at, now):
        return None
    return entity


async def revoke_login_session(session: AsyncSession, session_id: str) -> None:
    stmt = (
        update(UserSessionEntity)
        .where(
            UserSessionEntity.id == session_id,
            UserSessionEntity.revoked_at.is_(None),
        )
        .values(revoked_at=utcnow())
    )
    await session.execute(stmt)
    await session.flush()
