"""OAuth token revocation endpoint."""

from typing import Annotated

from fastapi import APIRouter, Form
from starlette.responses import JSONResponse

from mia.api.deps import Codec, DbSession
from mia.oidc.token_service import revoke_token

router = APIRouter()


@router.post("/oauth/revoke")
async def revoke(
    db: DbSession,
    codec: Codec,
    token: Annotated[str, Form()],
) -> JSONResponse:
    """POST /oauth/revoke -- revoke a token (idempotent per RFC 7009).

    Any ``token_type_hint`` is ignored; the token's own type claim decides.
    """
    await revoke_token(db, codec, token)
    return JSONResponse({}, status_code=200)
