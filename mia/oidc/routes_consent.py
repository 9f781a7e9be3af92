"""Login session and consent endpoints backing the external consent UI."""

import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Cookie, Form, Query
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from mia.api.deps import DbSession, Settings
from mia.core.errors import HTTP_UNAUTHORIZED, OAuthError
from mia.core.settings import AuthSettings
from mia.core.urls import with_query
from mia.db.models_oauth import AuthorizationRequestEntity
from mia.db.repo_oauth import get_client, get_pending_authorization_request
from mia.db.repo_user import (
    create_login_session,
    get_login_session,
    revoke_login_session,
    verify_credentials,
)
from mia.oidc.consent import approve, deny, has_standing_consent
from mia.oidc.scopes import describe, parse_scope
from mia.oidc.token_service import revoke_user_tokens

logger = logging.getLogger(__name__)

router = APIRouter()

SESSION_COOKIE = "mia_session"


def _login_redirect(request_id: str) -> RedirectResponse:
    return RedirectResponse(
        with_query("/oauth/login", {"request_id": request_id}), status_code=302
    )


def _consent_redirect(request_id: str) -> RedirectResponse:
    return RedirectResponse(
        with_query("/oauth/consent", {"request_id": request_id}), status_code=303
    )


def _set_session_cookie(
    response: RedirectResponse | JSONResponse, session_id: str, settings: AuthSettings
) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        max_age=settings.session_ttl,
        httponly=True,
        secure=settings.issuer.startswith("https://"),
        samesite="lax",
        path="/",
    )


async def _pending(db: AsyncSession, request_id: str) -> AuthorizationRequestEntity:
    request = await get_pending_authorization_request(db, request_id)
    if request is None:
        raise OAuthError(
            "invalid_request", "Authorization request expired or already used"
        )
    return request


@router.get("/oauth/login")
async def login_form(request_id: Annotated[str | None, Query()] = None) -> dict:
    """GET /oauth/login -- describe the login form for the UI."""
    return {
        "action": "/oauth/login",
        "method": "POST",
        "fields": ["email", "password", "request_id"],
        "request_id": request_id,
    }


@router.post("/oauth/login", response_model=None)
async def login(
    db: DbSession,
    settings: Settings,
    email: Annotated[str, Form()],
    password: Annotated[str, Form()],
    request_id: Annotated[str | None, Form()] = None,
) -> RedirectResponse | JSONResponse:
    """POST /oauth/login -- open a session, then continue to consent."""
    user = await verify_credentials(db, email, password)
    if user is None:
        logger.info("Failed login attempt")
        raise OAuthError(
            "access_denied", "Invalid email or password", status_code=HTTP_UNAUTHORIZED
        )
    login_session = await create_login_session(
        db, user.id, ttl_seconds=settings.session_ttl
    )
    response: RedirectResponse | JSONResponse
    if request_id:
        response = _consent_redirect(request_id)
    else:
        response = JSONResponse({"ok": True})
    _set_session_cookie(response, login_session.id, settings)
    return response


@router.post("/oauth/logout")
async def logout(
    db: DbSession,
    mia_session: Annotated[str | None, Cookie()] = None,
) -> JSONResponse:
    """POST /oauth/logout -- end the session and revoke the user's tokens."""
    if mia_session:
        login_session = await get_login_session(db, mia_session)
        if login_session is not None:
            await revoke_login_session(db, login_session.id)
            await revoke_user_tokens(db, login_session.user_id)
    response = JSONResponse({"ok": True})
    response.delete_cookie(SESSION_COOKIE, path="/")
    return response


@router.get("/oauth/consent", response_model=None)
async def consent_page(
    db: DbSession,
    settings: Settings,
    request_id: Annotated[str, Query()],
    mia_session: Annotated[str | None, Cookie()] = None,
) -> RedirectResponse | JSONResponse:
    """GET /oauth/consent -- auto-approve or describe what is being asked."""
    request = await _pending(db, request_id)
    login_session = await get_login_session(db, mia_session) if mia_session else None
    if login_session is None:
        return _login_redirect(request_id)

    if await has_standing_consent(db, request, login_session.user_id):
        url = await approve(db, request, login_session.user_id, settings)
        return RedirectResponse(url, status_code=302)

    client = await get_client(db, request.client_id)
    return JSONResponse(
        {
            "request_id": request.id,
            "client": {
                "client_id": request.client_id,
                "client_name": client.client_name if client else request.client_id,
            },
            "redirect_uri": request.redirect_uri,
            "scopes": describe(parse_scope(request.scope)),
        },
        headers={"Cache-Control": "no-store"},
    )


@router.post("/oauth/consent", response_model=None)
async def consent_decision(
    db: DbSession,
    settings: Settings,
    request_id: Annotated[str, Form()],
    action: Annotated[Literal["approve", "deny"], Form()],
    mia_session: Annotated[str | None, Cookie()] = None,
) -> RedirectResponse:
    """POST /oauth/consent -- approve or deny a pending request."""
    request = await _pending(db, request_id)
    login_session = await get_login_session(db, mia_session) if mia_session else None
    if login_session is None:
        return _login_redirect(request_id)

    if action == "approve":
        url = await approve(db, request, login_session.user_id, settings)
    else:
        url = await deny(db, request)
    return RedirectResponse(url, status_code=302)
