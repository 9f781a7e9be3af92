"""Type definitions for signing keys, JWKS, and JWT operations."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class TokenType(StrEnum):
    """Purpose of a signed token, embedded as the ``type`` claim."""

    ACCESS = "access_token"
    REFRESH = "refresh_token"
    ID = "id_token"


class SigningKeyData(BaseModel):
    """An RSA keypair for JWT signing."""

    kid: str
    private_key_pem: str
    public_key_pem: str


class JWKEntry(BaseModel):
    """Single JWK entry in a JWKS response."""

    kty: str = "RSA"
    use: str = "sig"
    alg: str = "RS256"
    kid: str
    n: str
    e: str


class JWKSResponse(BaseModel):
    """JSON Web Key Set response."""

    keys: list[JWKEntry]


class AccessClaims(BaseModel):
    """Claims bundle for access token creation."""

    sub: str
    client_id: str
    scope: str
    email: str | None = None
    name: str | None = None


class RefreshClaims(BaseModel):
    """Claims bundle for refresh token creation."""

    sub: str
    client_id: str
    scope: str


class IdTokenClaims(BaseModel):
    """OIDC identity claims."""

    sub: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None


class IssuedToken(BaseModel):
    """A freshly signed token plus the bookkeeping needed to track it."""

    token: str
    jti: str
    expires_at: datetime


class DecodedToken(BaseModel):
    """Decoded and verified JWT token claims."""

    model_config = ConfigDict(extra="allow")

    sub: str = ""
    iss: str = ""
    aud: str | list[str] | None = None
    exp: int = 0
    iat: int = 0
    jti: str = ""
    type: str = ""
    scope: str = ""
    client_id: str = ""
    email: str | None = None
    name: str | None = None
    nonce: str | None = None

    @property
    def scopes(self) -> list[str]:
        return [s for s in self.scope.split(" ") if s]
