"""Tests for bearer access-token authentication."""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.errors import BearerAuthError
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.types import AccessClaims
from mia.db.models_user import UserEntity
from mia.oidc.bearer import authenticate_bearer, extract_bearer
from mia.oidc.token_service import grant_for_user, issue_tokens, revoke_token


async def _access_token(
    session: AsyncSession, codec: TokenCodec, user: UserEntity, **kwargs
) -> str:
    grant = grant_for_user(user, client_id="agent-client", scope="openid email")
    tokens = await issue_tokens(session, codec, grant, **kwargs)
    return tokens.access_token


class TestExtractBearer:
    def test_accepts_case_insensitive_scheme(self) -> None:
        assert extract_bearer("bearer abc") == "abc"
        assert extract_bearer("Bearer abc") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer a b"])
    def test_rejects_malformed(self, header: str | None) -> None:
        with pytest.raises(BearerAuthError) as exc_info:
            extract_bearer(header)
        assert exc_info.value.code == "missing_token"


class TestAuthenticateBearer:
    """Tests for the full verification path."""

    async def test_valid_token(
        self, db_session: AsyncSession, codec: TokenCodec, user: UserEntity
    ) -> None:
        token = await _access_token(db_session, codec, user)
        principal = await authenticate_bearer(db_session, codec, f"Bearer {token}")
        assert principal.user_id == user.id
        assert principal.email == user.email
        assert principal.client_id == "agent-client"
        assert principal.has_scope("email")
        assert principal.has_all_scopes(["openid", "email"])
        assert principal.has_any_scope(["tasks:write", "openid"])
        assert not principal.has_scope("tasks:write")

    async def test_expired_token(
        self, db_session: AsyncSession, codec: TokenCodec, user: UserEntity
    ) -> None:
        token = await _access_token(
            db_session, codec, user, now=datetime.now(UTC) - timedelta(hours=2)
        )
        with pytest.raises(BearerAuthError) as exc_info:
            await authenticate_bearer(db_session, codec, f"Bearer {token}")
        assert exc_info.value.code == "expired_token"

    async def test_garbage_token(
        self, db_session: AsyncSession, codec: TokenCodec
    ) -> None:
        with pytest.raises(BearerAuthError) as exc_info:
            await authenticate_bearer(db_session, codec, "Bearer not-a-jwt")
        assert exc_info.value.code == "invalid_token"

    async def test_revoked_token(
        self, db_session: AsyncSession, codec: TokenCodec, user: UserEntity
    ) -> None:
        token = await _access_token(db_session, codec, user)
        await revoke_token(db_session, codec, token)
        db_session.expire_all()
        with pytest.raises(BearerAuthError) as exc_info:
            await authenticate_bearer(db_session, codec, f"Bearer {token}")
        assert exc_info.value.code == "revoked_token"

    async def test_untracked_token(
        self, db_session: AsyncSession, codec: TokenCodec, user: UserEntity
    ) -> None:
        issued = codec.create_access_token(
            AccessClaims(sub=user.id, client_id="agent-client", scope="openid")
        )
        with pytest.raises(BearerAuthError) as exc_info:
            await authenticate_bearer(db_session, codec, f"Bearer {issued.token}")
        assert exc_info.value.code == "revoked_token"

    async def test_deactivated_user(
        self, db_session: AsyncSession, codec: TokenCodec, user: UserEntity
    ) -> None:
        token = await _access_token(db_session, codec, user)
        user.is_active = False
        await db_session.flush()
        with pytest.raises(BearerAuthError) as exc_info:
            await authenticate_bearer(db_session, codec, f"Bearer {token}")
        assert exc_info.value.code == "user_not_found"
