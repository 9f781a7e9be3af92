"""Tests for RS256 token signing and verification."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from mia.crypto.jwt_codec import TokenCodec, TokenTypeMismatchError
from mia.crypto.keys import KeyManager, generate_rsa_keypair
from mia.crypto.types import AccessClaims, IdTokenClaims, RefreshClaims, TokenType

ISSUER = "http://localhost:8000"
RESOURCE = "http://localhost:8000/mcp"


def _access(codec: TokenCodec, **kwargs) -> str:
    claims = AccessClaims(
        sub="user-1",
        client_id="agent-client",
        scope="openid meetings:read",
        email="ada@example.com",
    )
    return codec.create_access_token(claims, **kwargs).token


class TestAccessToken:
    """Tests for access token creation and verification."""

    def test_roundtrip(self, codec: TokenCodec) -> None:
        decoded = codec.verify(_access(codec), TokenType.ACCESS)
        assert decoded.sub == "user-1"
        assert decoded.iss == ISSUER
        assert decoded.aud == RESOURCE
        assert decoded.client_id == "agent-client"
        assert decoded.scopes == ["openid", "meetings:read"]
        assert decoded.email == "ada@example.com"

    def test_header_carries_kid_and_typ(self, codec: TokenCodec) -> None:
        header = jwt.get_unverified_header(_access(codec))
        assert header["alg"] == "RS256"
        assert header["typ"] == "at+jwt"
        assert header["kid"]

    def test_jti_is_unique(self, codec: TokenCodec) -> None:
        claims = AccessClaims(sub="u", client_id="c", scope="openid")
        first = codec.create_access_token(claims)
        second = codec.create_access_token(claims)
        assert first.jti != second.jti

    def test_expires_after_ttl(self, codec: TokenCodec) -> None:
        issued_at = datetime(2025, 1, 1, tzinfo=UTC)
        claims = AccessClaims(sub="u", client_id="c", scope="openid")
        issued = codec.create_access_token(claims, now=issued_at)
        assert issued.expires_at == issued_at + timedelta(seconds=3600)

    def test_expired_token_rejected(self, codec: TokenCodec) -> None:
        stale = _access(codec, now=datetime.now(UTC) - timedelta(hours=2))
        with pytest.raises(jwt.ExpiredSignatureError):
            codec.verify(stale, TokenType.ACCESS)

    def test_wrong_audience_rejected(self, codec: TokenCodec) -> None:
        with pytest.raises(jwt.InvalidAudienceError):
            codec.verify(_access(codec), TokenType.ACCESS, audience="https://other")

    def test_wrong_issuer_rejected(self, codec: TokenCodec, keypair) -> None:
        other = TokenCodec(
            KeyManager(
                private_key_pem=keypair.private_key_pem,
                public_key_pem=keypair.public_key_pem,
                kid=keypair.kid,
            ),
            issuer="https://evil.example.com",
            resource=RESOURCE,
        )
        with pytest.raises(jwt.InvalidIssuerError):
            codec.verify(_access(other), TokenType.ACCESS)

    def test_foreign_key_rejected(self, codec: TokenCodec, keypair) -> None:
        foreign = generate_rsa_keypair()
        forger = TokenCodec(
            KeyManager(
                private_key_pem=foreign.private_key_pem,
                public_key_pem=foreign.public_key_pem,
                kid=keypair.kid,
            ),
            issuer=ISSUER,
            resource=RESOURCE,
        )
        with pytest.raises(jwt.InvalidSignatureError):
            codec.verify(_access(forger), TokenType.ACCESS)

    def test_unknown_kid_rejected(self, codec: TokenCodec) -> None:
        foreign = generate_rsa_keypair()
        forger = TokenCodec(
            KeyManager(
                private_key_pem=foreign.private_key_pem,
                public_key_pem=foreign.public_key_pem,
                kid="unknown",
            ),
            issuer=ISSUER,
            resource=RESOURCE,
        )
        with pytest.raises(jwt.InvalidTokenError, match="Unknown signing key"):
            codec.verify(_access(forger), TokenType.ACCESS)

    def test_hs256_rejected(self, codec: TokenCodec) -> None:
        token = jwt.encode(
            {"sub": "u", "type": "access_token"}, "secret", algorithm="HS256"
        )
        with pytest.raises(jwt.InvalidAlgorithmError):
            codec.verify(token, TokenType.ACCESS)


class TestTokenPurpose:
    """A token minted for one purpose is never accepted for another."""

    def test_refresh_token_is_not_an_access_token(self, codec: TokenCodec) -> None:
        refresh = codec.create_refresh_token(
            RefreshClaims(sub="u", client_id="c", scope="openid")
        )
        with pytest.raises(jwt.InvalidTokenError):
            codec.verify(refresh.token, TokenType.ACCESS)

    def test_access_token_is_not_a_refresh_token(self, codec: TokenCodec) -> None:
        with pytest.raises(TokenTypeMismatchError):
            codec.verify(_access(codec), TokenType.REFRESH)

    def test_refresh_roundtrip(self, codec: TokenCodec) -> None:
        refresh = codec.create_refresh_token(
            RefreshClaims(sub="u", client_id="c", scope="openid offline_access")
        )
        decoded = codec.verify(refresh.token, TokenType.REFRESH)
        assert decoded.jti == refresh.jti
        assert decoded.aud is None
        assert decoded.scope == "openid offline_access"


class TestIdToken:
    """Tests for OIDC id_token creation."""

    def test_audience_is_client_and_nonce_echoed(self, codec: TokenCodec) -> None:
        token = codec.create_id_token(
            IdTokenClaims(sub="user-1", email="ada@example.com", email_verified=True),
            client_id="agent-client",
            nonce="n-123",
        )
        decoded = codec.verify(token, TokenType.ID, audience="agent-client")
        assert decoded.sub == "user-1"
        assert decoded.nonce == "n-123"
        assert decoded.email == "ada@example.com"

    def test_optional_claims_omitted(self, codec: TokenCodec) -> None:
        token = codec.create_id_token(IdTokenClaims(sub="user-1"), client_id="c")
        payload = jwt.decode(token, options={"verify_signature": False})
        assert "nonce" not in payload
        assert "email" not in payload
        assert payload["email_verified"] is False


class TestInspect:
    """Tests for signature-only inspection used by revocation."""

    def test_tolerates_expiry(self, codec: TokenCodec) -> None:
        stale = _access(codec, now=datetime.now(UTC) - timedelta(hours=2))
        decoded = codec.inspect(stale)
        assert decoded is not None
        assert decoded.type == "access_token"

    def test_foreign_token_is_none(self, codec: TokenCodec) -> None:
        assert codec.inspect("not.a.jwt") is None
        token = jwt.encode({"sub": "u"}, "secret", algorithm="HS256")
        assert codec.inspect(token) is None
