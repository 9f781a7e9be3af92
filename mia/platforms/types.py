"""Closed set of supported third-party platforms and their token payloads."""

from enum import StrEnum

from pydantic import BaseModel


class Platform(StrEnum):
    """Third-party platforms the broker holds tokens for."""

    ZOOM = "zoom"
    ASANA = "asana"


class ProviderTokens(BaseModel):
    """Token endpoint response from a third-party provider."""

    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    token_type: str = "Bearer"
    scope: str | None = None
