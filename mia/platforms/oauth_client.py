"""HTTP client for third-party OAuth authorize and token endpoints."""

import logging
import urllib.parse

import httpx

from mia.core.settings import HTTP_TIMEOUT_DEFAULT
from mia.platforms.errors import PlatformRefreshError, ProviderRejectedError
from mia.platforms.strategies import PlatformConfig
from mia.platforms.types import ProviderTokens

logger = logging.getLogger(__name__)

HTTP_SERVER_ERROR = 500


class PlatformOAuthClient:
    """Speaks OAuth 2.0 to one provider using its credential strategy.

    ``transport`` is handed to ``httpx.AsyncClient``; tests pass an
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        config: PlatformConfig,
        *,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._timeout = timeout
        self._transport = transport

    def build_authorization_url(self, state: str, code_challenge: str) -> str:
        """Provider authorize URL for the connect redirect."""
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "state": state,
        }
        if self.config.send_scope:
            params["scope"] = " ".join(self.config.scopes)
        if self.config.pkce_required:
            params["code_challenge"] = code_challenge
            params["code_challenge_method"] = "S256"
        return f"{self.config.auth_url}?{urllib.parse.urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: str) -> ProviderTokens:
        """Exchange an authorization code for the provider's tokens."""
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        }
        if self.config.pkce_required:
            data["code_verifier"] = code_verifier
        return await self._post_token(data)

    async def refresh(self, refresh_token: str) -> ProviderTokens:
        """Redeem a refresh token for a new access token."""
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    async def _post_token(self, data: dict[str, str]) -> ProviderTokens:
        platform = self.config.platform
        strategy = self.config.credentials
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            **strategy.auth_headers(),
        }
        body = {**data, **strategy.body_params()}
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self.config.token_url, data=body, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("%s token endpoint timed out", platform.value)
            raise PlatformRefreshError(platform, "Token endpoint timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s token endpoint unreachable: %s", platform.value, exc)
            raise PlatformRefreshError(platform, "Token endpoint unreachable") from exc

        if resp.status_code >= HTTP_SERVER_ERROR:
            logger.warning(
                "%s token endpoint failed with %s", platform.value, resp.status_code
            )
            raise PlatformRefreshError(
                platform, f"Token endpoint returned {resp.status_code}"
            )
        if resp.is_error:
            logger.warning(
                "%s rejected %s with %s",
                platform.value,
                data["grant_type"],
                resp.status_code,
            )
            raise ProviderRejectedError(
                platform,
                resp.status_code,
                f"Token request rejected with {resp.status_code}",
            )
        try:
            return ProviderTokens.model_validate(resp.json())
        except ValueError as exc:
            raise PlatformRefreshError(
                platform, "Token endpoint returned an unexpected body"
            ) from exc
