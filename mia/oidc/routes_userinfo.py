"""OIDC userinfo endpoint."""

from fastapi import APIRouter
from starlette.responses import JSONResponse

from mia.api.deps import DbSession, Principal
from mia.core.errors import NO_STORE_HEADERS
from mia.db.repo_user import get_user_by_id

router = APIRouter()


@router.api_route("/oauth/userinfo", methods=["GET", "POST"])
async def userinfo(db: DbSession, principal: Principal) -> JSONResponse:
    """Claims for the token's subject, filtered by granted scopes."""
    user = await get_user_by_id(db, principal.user_id)
    body: dict[str, object] = {"sub": principal.user_id}
    if user is not None and principal.has_scope("profile"):
        body["name"] = user.name
        body["picture"] = user.picture
    if user is not None and principal.has_scope("email"):
        body["email"] = user.email
        body["email_verified"] = user.email_verified
    return JSONResponse(body, headers=NO_STORE_HEADERS)
