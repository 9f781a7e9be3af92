"""OIDC token endpoint."""

import logging
from typing import Annotated

from fastapi import APIRouter, Form
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.responses import JSONResponse

from mia.api.deps import Codec, DbSession, Settings
from mia.core.errors import NO_STORE_HEADERS, OAuthError
from mia.core.settings import AuthSettings
from mia.crypto.jwt_codec import TokenCodec
from mia.oidc.auth_code import CodeRedemption
from mia.oidc.token_service import exchange_authorization_code, refresh_access_token
from mia.oidc.types import RefreshRequest

logger = logging.getLogger(__name__)

router = APIRouter()


class _TokenForm(BaseModel):
    """Bundle form fields for the token endpoint."""

    grant_type: str | None = None
    code: str | None = None
    redirect_uri: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    code_verifier: str | None = None
    refresh_token: str | None = None
    scope: str | None = None


def _error_response(exc: OAuthError) -> JSONResponse:
    return JSONResponse(
        exc.to_body(), status_code=exc.status_code, headers=NO_STORE_HEADERS
    )


@router.post("/oauth/token", response_model=None)
async def token_endpoint(
    db: DbSession,
    settings: Settings,
    codec: Codec,
    form: Annotated[_TokenForm, Form()],
) -> JSONResponse:
    """POST /oauth/token -- exchange auth code or refresh token.

    Errors are rendered here rather than raised so that revocations made
    while rejecting a grant (refresh-token reuse) are still committed.
    """
    try:
        if form.grant_type == "authorization_code":
            body = await _handle_auth_code(db, settings, codec, form)
        elif form.grant_type == "refresh_token":
            body = await _handle_refresh(db, settings, codec, form)
        elif not form.grant_type:
            raise OAuthError("invalid_request", "grant_type is required")
        else:
            raise OAuthError(
                "unsupported_grant_type",
                f"Unsupported grant_type: {form.grant_type}",
            )
    except OAuthError as exc:
        logger.info("Token request rejected: %s", exc.error)
        return _error_response(exc)
    return JSONResponse(body, headers=NO_STORE_HEADERS)


async def _handle_auth_code(
    db: AsyncSession,
    settings: AuthSettings,
    codec: TokenCodec,
    form: _TokenForm,
) -> dict:
    """Handle grant_type=authorization_code."""
    if not form.code or not form.redirect_uri or not form.client_id:
        raise OAuthError(
            "invalid_request", "code, redirect_uri and client_id are required"
        )
    if not form.code_verifier:
        raise OAuthError("invalid_request", "code_verifier is required (PKCE)")
    tokens = await exchange_authorization_code(
        db,
        codec,
        CodeRedemption(
            code=form.code,
            client_id=form.client_id,
            redirect_uri=form.redirect_uri,
            code_verifier=form.code_verifier,
            client_secret=form.client_secret,
        ),
        allow_plain=settings.allow_plain_pkce,
    )
    return tokens.model_dump(exclude_none=True)


async def _handle_refresh(
    db: AsyncSession,
    settings: AuthSettings,
    codec: TokenCodec,
    form: _TokenForm,
) -> dict:
    """Handle grant_type=refresh_token."""
    if not form.refresh_token:
        raise OAuthError("invalid_request", "refresh_token is required")
    tokens = await refresh_access_token(
        db,
        codec,
        RefreshRequest(
            refresh_token=form.refresh_token,
            client_id=form.client_id,
            client_secret=form.client_secret,
            scope=form.scope,
        ),
        rotate=settings.rotate_refresh_tokens,
    )
    return tokens.model_dump(exclude_none=True)
