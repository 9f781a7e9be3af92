"""OIDC authorization endpoint."""

from typing import Annotated

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from mia.api.deps import DbSession, Settings
from mia.core.urls import with_query
from mia.oidc.authorize import AuthorizeQuery, validate_authorize_request

router = APIRouter()


@router.get("/oauth/authorize", response_model=None)
async def authorize(
    db: DbSession,
    settings: Settings,
    q: Annotated[AuthorizeQuery, Query()],
) -> RedirectResponse:
    """GET /oauth/authorize -- validate, then hand off to login/consent."""
    request = await validate_authorize_request(db, q, settings)
    return RedirectResponse(
        url=with_query("/oauth/consent", {"request_id": request.id}),
        status_code=302,
    )
