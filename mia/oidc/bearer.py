"""Bearer access-token authentication for protected resources."""

import logging

import jwt
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import is_expired
from mia.core.errors import BearerAuthError
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.types import TokenType
from mia.db.repo_user import get_user_by_id
from mia.oidc.token_service import get_access_token_record

logger = logging.getLogger(__name__)


class AuthenticatedPrincipal(BaseModel):
    """The user and client behind a verified access token."""

    user_id: str
    email: str
    name: str | None = None
    scopes: list[str]
    client_id: str

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def has_any_scope(self, scopes: list[str]) -> bool:
        return any(s in self.scopes for s in scopes)

    def has_all_scopes(self, scopes: list[str]) -> bool:
        return all(s in self.scopes for s in scopes)


def extract_bearer(authorization: str | None) -> str:
    """Return the token from an ``Authorization: Bearer`` header value."""
    parts = (authorization or "").split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise BearerAuthError("missing_token", "Missing or malformed Bearer token")
    return parts[1]


async def authenticate_bearer(
    session: AsyncSession, codec: TokenCodec, authorization: str | None
) -> AuthenticatedPrincipal:
    """Verify the token, its revocation record, and its user.

    Raises ``BearerAuthError`` with one of ``missing_token``,
    ``expired_token``, ``invalid_token``, ``revoked_token``, or
    ``user_not_found``.
    """
    token = extract_bearer(authorization)
    try:
        claims = codec.verify(token, TokenType.ACCESS)
    except jwt.ExpiredSignatureError as exc:
        raise BearerAuthError("expired_token", "Access token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise BearerAuthError("invalid_token", "Invalid access token") from exc

    record = await get_access_token_record(session, claims.jti)
    if record is None or record.revoked_at is not None or is_expired(record.expires_at):
        logger.info("Rejected revoked or untracked access token %s", claims.jti)
        raise BearerAuthError("revoked_token", "Access token has been revoked")

    user = await get_user_by_id(session, claims.sub)
    if user is None or not user.is_active:
        raise BearerAuthError("user_not_found", "User not found")

    return AuthenticatedPrincipal(
        user_id=user.id,
        email=user.email,
        name=user.name,
        scopes=claims.scopes,
        client_id=claims.client_id,
    )
