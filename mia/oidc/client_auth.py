"""Token-endpoint client authentication (client_secret_post)."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from mia.core.errors import HTTP_UNAUTHORIZED, OAuthError
from mia.crypto.password import verify_password
from mia.db.models_oauth import CONFIDENTIAL_CLIENT
from mia.db.repo_oauth import get_client

logger = logging.getLogger(__name__)


async def authenticate_client(
    session: AsyncSession, client_id: str, client_secret: str | None
) -> None:
    """Require a matching secret from confidential clients.

    Public clients authenticate through PKCE alone, so nothing is checked
    for them or for ids we do not know; the grant itself is bound to its
    client and fails on its own.
    """
    client = await get_client(session, client_id)
    if client is None or client.client_type != CONFIDENTIAL_CLIENT:
        return
    if not client_secret or not verify_password(client_secret, client.client_secret_hash):
        logger.warning("Client authentication failed for %s", client_id)
        raise OAuthError(
            "invalid_client",
            "Client authentication failed",
            status_code=HTTP_UNAUTHORIZED,
        )
