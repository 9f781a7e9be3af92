"""OpenID Connect Discovery and OAuth protected-resource metadata."""

from pydantic import BaseModel

from mia.core.settings import AuthSettings
from mia.oidc.scopes import SCOPE_DESCRIPTIONS


class DiscoveryDocument(BaseModel):
    """OIDC .well-known/openid-configuration response."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str
    revocation_endpoint: str
    response_types_supported: list[str]
    grant_types_supported: list[str]
    subject_types_supported: list[str]
    id_token_signing_alg_values_supported: list[str]
    scopes_supported: list[str]
    token_endpoint_auth_methods_supported: list[str]
    code_challenge_methods_supported: list[str]
    claims_supported: list[str]


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 .well-known/oauth-protected-resource response."""

    resource: str
    authorization_servers: list[str]
    scopes_supported: list[str]
    bearer_methods_supported: list[str]
    resource_documentation: str | None = None


def build_discovery(settings: AuthSettings) -> DiscoveryDocument:
    """Build the OIDC discovery document from settings."""
    issuer = settings.issuer
    return DiscoveryDocument(
        issuer=issuer,
        authorization_endpoint=f"{issuer}/oauth/authorize",
        token_endpoint=f"{issuer}/oauth/token",
        userinfo_endpoint=f"{issuer}/oauth/userinfo",
        jwks_uri=f"{issuer}/oauth/jwks",
        revocation_endpoint=f"{issuer}/oauth/revoke",
        response_types_supported=["code"],
        grant_types_supported=["authorization_code", "refresh_token"],
        subject_types_supported=["public"],
        id_token_signing_alg_values_supported=["RS256"],
        scopes_supported=list(SCOPE_DESCRIPTIONS),
        token_endpoint_auth_methods_supported=["none", "client_secret_post"],
        code_challenge_methods_supported=["S256"],
        claims_supported=[
            "sub",
            "iss",
            "aud",
            "exp",
            "iat",
            "email",
            "email_verified",
            "name",
            "picture",
        ],
    )


def build_protected_resource(settings: AuthSettings) -> ProtectedResourceMetadata:
    return ProtectedResourceMetadata(
        resource=settings.resource,
        authorization_servers=[settings.issuer],
        scopes_supported=list(SCOPE_DESCRIPTIONS),
        bearer_methods_supported=["header"],
        resource_documentation=f"{settings.issuer}/docs",
    )
