"""Tests for the provider OAuth HTTP client."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from mia.core.settings import AuthSettings, PlatformSettings
from mia.platforms.errors import PlatformRefreshError, ProviderRejectedError
from mia.platforms.oauth_client import PlatformOAuthClient
from mia.platforms.strategies import build_platform_config
from mia.platforms.types import Platform


def _client(
    platform: Platform,
    platform_settings: PlatformSettings,
    auth_settings: AuthSettings,
    transport: httpx.AsyncBaseTransport,
) -> PlatformOAuthClient:
    config = build_platform_config(platform, platform_settings, auth_settings)
    return PlatformOAuthClient(config, transport=transport)


def _form(request: httpx.Request) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


class TestAuthorizationUrl:
    """Tests for the provider authorize redirect."""

    def test_zoom_sends_scope_and_pkce(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        client = _client(Platform.ZOOM, platform_settings, auth_settings, provider.transport)
        url = urlsplit(client.build_authorization_url("st-1", "challenge"))
        params = parse_qs(url.query)
        assert f"{url.scheme}://{url.netloc}{url.path}" == "https://zoom.us/oauth/authorize"
        assert params["client_id"] == ["zoom-client"]
        assert params["state"] == ["st-1"]
        assert params["response_type"] == ["code"]
        assert params["code_challenge"] == ["challenge"]
        assert params["code_challenge_method"] == ["S256"]
        assert "meeting:read:meeting" in params["scope"][0].split()

    def test_asana_omits_scope_and_pkce(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        client = _client(Platform.ASANA, platform_settings, auth_settings, provider.transport)
        params = parse_qs(urlsplit(client.build_authorization_url("st-1", "c")).query)
        assert "scope" not in params
        assert "code_challenge" not in params


class TestTokenRequests:
    """Tests for code exchange and refresh calls."""

    async def test_zoom_exchange_uses_basic_auth(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        client = _client(Platform.ZOOM, platform_settings, auth_settings, provider.transport)
        tokens = await client.exchange_code("code-1", "verifier-1")
        assert tokens.access_token == "new-access-1"
        assert tokens.expires_in == 3600

        request = provider.requests[0]
        assert str(request.url) == "https://zoom.us/oauth/token"
        assert request.headers["authorization"].startswith("Basic ")
        form = _form(request)
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "code-1"
        assert form["code_verifier"] == "verifier-1"
        assert "client_secret" not in form

    async def test_asana_refresh_posts_credentials(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        client = _client(Platform.ASANA, platform_settings, auth_settings, provider.transport)
        await client.refresh("refresh-1")
        request = provider.requests[0]
        assert "authorization" not in request.headers
        assert _form(request) == {
            "grant_type": "refresh_token",
            "refresh_token": "refresh-1",
            "client_id": "asana-client",
            "client_secret": "asana-secret",
        }

    async def test_4xx_is_rejection(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        provider.queue(400, {"error": "invalid_grant"})
        client = _client(Platform.ZOOM, platform_settings, auth_settings, provider.transport)
        with pytest.raises(ProviderRejectedError) as exc_info:
            await client.refresh("refresh-1")
        assert exc_info.value.status_code == 400

    async def test_5xx_is_transient(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        provider.queue(503)
        client = _client(Platform.ZOOM, platform_settings, auth_settings, provider.transport)
        with pytest.raises(PlatformRefreshError):
            await client.refresh("refresh-1")

    async def test_timeout_is_transient(
        self, platform_settings: PlatformSettings, auth_settings: AuthSettings
    ) -> None:
        def _timeout(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(
            Platform.ZOOM, platform_settings, auth_settings, httpx.MockTransport(_timeout)
        )
        with pytest.raises(PlatformRefreshError, match="timed out"):
            await client.refresh("refresh-1")

    async def test_connection_error_is_transient(
        self, platform_settings: PlatformSettings, auth_settings: AuthSettings
    ) -> None:
        def _refused(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(
            Platform.ZOOM, platform_settings, auth_settings, httpx.MockTransport(_refused)
        )
        with pytest.raises(PlatformRefreshError, match="unreachable"):
            await client.refresh("refresh-1")

    async def test_unexpected_body(
        self,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        provider,
    ) -> None:
        provider.queue(200, {"token": "no access_token field"})
        client = _client(Platform.ZOOM, platform_settings, auth_settings, provider.transport)
        with pytest.raises(PlatformRefreshError, match="unexpected body"):
            await client.refresh("refresh-1")
