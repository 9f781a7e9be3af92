"""JWT signing and verification (RS256) for access, refresh, and ID tokens."""

from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
import uuid_utils
from jwt.types import Options

from mia.crypto.keys import KeyManager
from mia.crypto.types import (
    AccessClaims,
    DecodedToken,
    IdTokenClaims,
    IssuedToken,
    RefreshClaims,
    TokenType,
)

ALGORITHM = "RS256"
ACCESS_TOKEN_DEFAULT_TTL = 3600
REFRESH_TOKEN_DEFAULT_TTL = 2_592_000
ID_TOKEN_DEFAULT_TTL = 3600

_REQUIRED_CLAIMS = {
    TokenType.ACCESS: ["exp", "iat", "sub", "jti"],
    TokenType.REFRESH: ["exp", "iat", "sub", "jti"],
    TokenType.ID: ["exp", "iat", "sub"],
}


class TokenTypeMismatchError(jwt.InvalidTokenError):
    """The token is validly signed but was minted for another purpose."""


class TokenCodec:
    """Creates and verifies RS256-signed tokens, tagged by purpose."""

    def __init__(
        self,
        keys: KeyManager,
        *,
        issuer: str,
        resource: str,
        access_ttl: int = ACCESS_TOKEN_DEFAULT_TTL,
        refresh_ttl: int = REFRESH_TOKEN_DEFAULT_TTL,
        id_ttl: int = ID_TOKEN_DEFAULT_TTL,
    ) -> None:
        self._keys = keys
        self._issuer = issuer
        self._resource = resource
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.id_ttl = id_ttl

    @property
    def issuer(self) -> str:
        return self._issuer

    @property
    def resource(self) -> str:
        return self._resource

    def _sign(self, payload: dict[str, Any], headers: dict[str, str] | None = None) -> str:
        return jwt.encode(
            payload,
            self._keys.signing_key(),
            algorithm=ALGORITHM,
            headers={"kid": self._keys.kid, **(headers or {})},
        )

    def create_access_token(
        self, claims: AccessClaims, *, now: datetime | None = None
    ) -> IssuedToken:
        """Sign an access token scoped to the protected resource."""
        now = now or datetime.now(UTC)
        jti = str(uuid_utils.uuid7())
        expires_at = now + timedelta(seconds=self.access_ttl)
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": claims.sub,
            "aud": self._resource,
            "iat": now,
            "exp": expires_at,
            "jti": jti,
            "type": TokenType.ACCESS.value,
            "scope": claims.scope,
            "client_id": claims.client_id,
        }
        if claims.email is not None:
            payload["email"] = claims.email
        if claims.name is not None:
            payload["name"] = claims.name
        token = self._sign(payload, {"typ": "at+jwt"})
        return IssuedToken(token=token, jti=jti, expires_at=expires_at)

    def create_refresh_token(
        self, claims: RefreshClaims, *, now: datetime | None = None
    ) -> IssuedToken:
        """Sign a refresh token. It carries no audience: only we consume it."""
        now = now or datetime.now(UTC)
        jti = str(uuid_utils.uuid7())
        expires_at = now + timedelta(seconds=self.refresh_ttl)
        payload = {
            "iss": self._issuer,
            "sub": claims.sub,
            "iat": now,
            "exp": expires_at,
            "jti": jti,
            "type": TokenType.REFRESH.value,
            "scope": claims.scope,
            "client_id": claims.client_id,
        }
        return IssuedToken(token=self._sign(payload), jti=jti, expires_at=expires_at)

    def create_id_token(
        self,
        claims: IdTokenClaims,
        *,
        client_id: str,
        nonce: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Sign an id_token per OIDC Core 1.0, audience = the client."""
        now = now or datetime.now(UTC)
        payload: dict[str, Any] = {
            "iss": self._issuer,
            "sub": claims.sub,
            "aud": client_id,
            "iat": now,
            "exp": now + timedelta(seconds=self.id_ttl),
            "type": TokenType.ID.value,
            "email_verified": claims.email_verified,
        }
        for name in ("email", "name", "picture"):
            value = getattr(claims, name)
            if value is not None:
                payload[name] = value
        if nonce is not None:
            payload["nonce"] = nonce
        return self._sign(payload)

    def verify(
        self,
        token: str,
        expected_type: TokenType,
        *,
        audience: str | None = None,
    ) -> DecodedToken:
        """Verify signature, issuer, expiry, audience, and token purpose.

        Access tokens are always checked against the resource audience.
        Raises ``jwt.InvalidTokenError`` (or a subclass) on any failure.
        """
        if expected_type is TokenType.ACCESS and audience is None:
            audience = self._resource
        header = jwt.get_unverified_header(token)
        if header.get("alg") != ALGORITHM:
            raise jwt.InvalidAlgorithmError("Unsupported signing algorithm")
        key = self._keys.verification_key(header.get("kid"))
        if key is None:
            raise jwt.InvalidTokenError("Unknown signing key id")

        opts: Options = {"require": _REQUIRED_CLAIMS[expected_type]}
        if audience is None:
            opts["verify_aud"] = False
        raw = jwt.decode(
            token,
            key,
            algorithms=[ALGORITHM],
            issuer=self._issuer,
            audience=audience,
            options=opts,
        )
        if raw.get("type") != expected_type.value:
            raise TokenTypeMismatchError(
                f"Invalid token type: expected {expected_type.value}"
            )
        return DecodedToken.model_validate(raw)

    def inspect(self, token: str) -> DecodedToken | None:
        """Signature-verified claims of any purpose, tolerating expiry.

        Used where any of our tokens may be presented (revocation). Returns
        None if the token was not signed by us.
        """
        try:
            header = jwt.get_unverified_header(token)
            key = self._keys.verification_key(header.get("kid"))
            if key is None:
                return None
            raw = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=self._issuer,
                options={"verify_aud": False, "verify_exp": False},
            )
        except jwt.PyJWTError:
            return None
        return DecodedToken.model_validate(raw)
