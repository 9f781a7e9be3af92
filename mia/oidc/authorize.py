"""Validation of /oauth/authorize requests.

Errors raised before the redirect target is known to belong to a real
client are JSON; afterwards they are delivered to the client's redirect_uri.
"""

import logging

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.errors import OAuthError
from mia.core.settings import AuthSettings
from mia.core.urls import host_matches
from mia.db.models_oauth import AuthorizationRequestEntity, OAuthClientEntity
from mia.db.repo_oauth import (
    AuthorizationRequestData,
    add_redirect_uri,
    create_authorization_request,
    get_client,
    register_public_client,
    validate_redirect_uri,
)
from mia.oidc.pkce import PLAIN, S256
from mia.oidc.scopes import DEFAULT_SCOPE, parse_scope, unknown_scopes

logger = logging.getLogger(__name__)


class AuthorizeQuery(BaseModel):
    """Query parameters of the authorize endpoint, all optional on the wire."""

    client_id: str | None = None
    redirect_uri: str | None = None
    response_type: str | None = None
    scope: str | None = None
    state: str | None = None
    nonce: str | None = None
    code_challenge: str | None = None
    code_challenge_method: str | None = None


def _redirect_is_trusted(
    client: OAuthClientEntity, redirect_uri: str, trusted_domains: list[str]
) -> bool:
    return validate_redirect_uri(client, redirect_uri) or host_matches(
        redirect_uri, trusted_domains
    )


def _pkce_error(q: AuthorizeQuery, allow_plain: bool) -> str | None:
    if not q.code_challenge:
        return "code_challenge is required (PKCE)"
    method = q.code_challenge_method or S256
    if method == S256 or (method == PLAIN and allow_plain):
        return None
    return "code_challenge_method must be S256"


async def _resolve_client(
    session: AsyncSession,
    client_id: str,
    redirect_uri: str,
    trusted_domains: list[str],
) -> OAuthClientEntity:
    client = await get_client(session, client_id, active_only=False)
    if client is None:
        if not host_matches(redirect_uri, trusted_domains):
            raise OAuthError("invalid_client", "Unknown client_id")
        return await register_public_client(session, client_id, redirect_uri)
    if not client.is_active:
        raise OAuthError("invalid_client", "Client is disabled")
    return client


async def validate_authorize_request(
    session: AsyncSession, q: AuthorizeQuery, settings: AuthSettings
) -> AuthorizationRequestEntity:
    """Validate an authorize call and persist it as a pending request.

    Raises ``OAuthError``; see the module docstring for how it is delivered.
    """
    if q.response_type != "code":
        raise OAuthError(
            "unsupported_response_type", "Only response_type=code is supported"
        )
    if not q.client_id or not q.redirect_uri:
        raise OAuthError("invalid_request", "client_id and redirect_uri are required")

    trusted = settings.get_trusted_domains()

    pkce_error = _pkce_error(q, settings.allow_plain_pkce)
    if pkce_error is not None:
        existing = await get_client(session, q.client_id)
        if existing is not None and _redirect_is_trusted(
            existing, q.redirect_uri, trusted
        ):
            raise OAuthError(
                "invalid_request",
                pkce_error,
                redirect_uri=q.redirect_uri,
                state=q.state,
            )
        raise OAuthError("invalid_request", pkce_error)

    client = await _resolve_client(session, q.client_id, q.redirect_uri, trusted)
    if not _redirect_is_trusted(client, q.redirect_uri, trusted):
        raise OAuthError("invalid_request", "redirect_uri is not registered")
    await add_redirect_uri(session, client, q.redirect_uri)

    scopes = parse_scope(q.scope or DEFAULT_SCOPE)
    unknown = unknown_scopes(scopes)
    if unknown:
        raise OAuthError(
            "invalid_scope",
            f"Unrecognized scope: {' '.join(unknown)}",
            redirect_uri=q.redirect_uri,
            state=q.state,
        )

    request = await create_authorization_request(
        session,
        AuthorizationRequestData(
            client_id=client.id,
            redirect_uri=q.redirect_uri,
            scope=" ".join(scopes),
            state=q.state,
            nonce=q.nonce,
            code_challenge=q.code_challenge or "",
            code_challenge_method=q.code_challenge_method or S256,
        ),
        ttl_seconds=settings.auth_request_ttl,
    )
    logger.info("Accepted authorization request from client %s", client.id)
    return request
