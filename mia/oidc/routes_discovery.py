"""OIDC discovery, protected-resource metadata, and JWKS endpoints."""

from fastapi import APIRouter, Response

from mia.api.deps import Keys, Settings
from mia.crypto.types import JWKSResponse
from mia.oidc.discovery import (
    DiscoveryDocument,
    ProtectedResourceMetadata,
    build_discovery,
    build_protected_resource,
)

router = APIRouter()

JWKS_CACHE_CONTROL = "public, max-age=3600"


@router.get("/.well-known/openid-configuration")
async def openid_configuration(settings: Settings) -> DiscoveryDocument:
    """OpenID Connect Discovery 1.0."""
    return build_discovery(settings)


@router.get("/.well-known/oauth-protected-resource")
async def protected_resource(settings: Settings) -> ProtectedResourceMetadata:
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return build_protected_resource(settings)


@router.get("/oauth/jwks")
@router.get("/.well-known/jwks.json")
async def jwks(response: Response, keys: Keys) -> JWKSResponse:
    """JSON Web Key Set endpoint."""
    response.headers["Cache-Control"] = JWKS_CACHE_CONTROL
    return keys.jwks()
