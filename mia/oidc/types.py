"""Type definitions for OIDC token operations."""

from pydantic import BaseModel


class TokenResponse(BaseModel):
    """OAuth token endpoint response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str


class TokenGrant(BaseModel):
    """What an approved grant entitles the client to."""

    client_id: str
    user_id: str
    scope: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
    picture: str | None = None
    nonce: str | None = None


class RefreshRequest(BaseModel):
    """Parameters of a refresh_token grant."""

    refresh_token: str
    client_id: str | None = None
    client_secret: str | None = None
    scope: str | None = None
