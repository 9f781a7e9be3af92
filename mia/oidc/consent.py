"""Consent decisions for pending authorization requests."""

import logging
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.clock import utcnow
from mia.core.errors import OAuthError
from mia.core.settings import AuthSettings
from mia.core.urls import with_query
from mia.db.models_oauth import AuthorizationRequestEntity, ConsentEntity
from mia.db.repo_oauth import (
    consume_authorization_request,
    get_consent,
    upsert_consent,
)
from mia.oidc.auth_code import AuthCodeParams, create_authorization_code
from mia.oidc.scopes import parse_scope

logger = logging.getLogger(__name__)


def consent_covers(consent: ConsentEntity | None, scopes: list[str]) -> bool:
    """True if an unrevoked consent already grants every scope requested."""
    if consent is None or consent.revoked_at is not None:
        return False
    granted = set(parse_scope(consent.scope))
    return set(scopes) <= granted


async def has_standing_consent(
    session: AsyncSession, request: AuthorizationRequestEntity, user_id: str
) -> bool:
    consent = await get_consent(session, user_id, request.client_id)
    return consent_covers(consent, parse_scope(request.scope))


async def _consume(
    session: AsyncSession, request: AuthorizationRequestEntity, now: datetime
) -> None:
    if not await consume_authorization_request(session, request.id, now=now):
        raise OAuthError(
            "invalid_request", "Authorization request expired or already used"
        )


def _with_state(request: AuthorizationRequestEntity, params: dict[str, str]) -> str:
    if request.state:
        params["state"] = request.state
    return with_query(request.redirect_uri, params)


async def approve(
    session: AsyncSession,
    request: AuthorizationRequestEntity,
    user_id: str,
    settings: AuthSettings,
    *,
    now: datetime | None = None,
) -> str:
    """Record consent, issue a code, and return the client redirect URL."""
    now = now or utcnow()
    await _consume(session, request, now)
    scopes = parse_scope(request.scope)
    await upsert_consent(session, user_id, request.client_id, scopes, now=now)
    code = await create_authorization_code(
        session,
        AuthCodeParams(
            client_id=request.client_id,
            user_id=user_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            nonce=request.nonce,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            ttl_seconds=settings.auth_code_ttl,
        ),
        now=now,
    )
    logger.info("User %s approved client %s", user_id, request.client_id)
    return _with_state(request, {"code": code})


async def deny(
    session: AsyncSession,
    request: AuthorizationRequestEntity,
    *,
    now: datetime | None = None,
) -> str:
    """Consume the request and return an access_denied redirect URL."""
    await _consume(session, request, now or utcnow())
    logger.info("Consent denied for client %s", request.client_id)
    return _with_state(
        request,
        {"error": "access_denied", "error_description": "User denied the request"},
    )
