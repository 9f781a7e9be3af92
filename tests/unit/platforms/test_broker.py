"""Tests for the platform token broker's refresh behaviour."""

import asyncio
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from mia.core.clock import utcnow
from mia.core.errors import ConfigurationError
from mia.core.settings import AuthSettings, PlatformSettings
from mia.crypto.token_cipher import TokenCipher
from mia.db.repo_platform import StoredTokens, get_connection, upsert_connection
from mia.platforms.broker import PlatformBrokerRegistry, PlatformTokenBroker
from mia.platforms.errors import PlatformRefreshError, ReconnectRequiredError
from mia.platforms.oauth_client import PlatformOAuthClient
from mia.platforms.strategies import build_platform_config
from mia.platforms.types import Platform

USER_ID = "user-1"
SKEW = 120


@pytest.fixture
def session_factory(file_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(file_engine, expire_on_commit=False)


@pytest.fixture
def broker(
    session_factory: async_sessionmaker[AsyncSession],
    cipher: TokenCipher,
    platform_settings: PlatformSettings,
    auth_settings: AuthSettings,
    provider,
) -> PlatformTokenBroker:
    config = build_platform_config(Platform.ZOOM, platform_settings, auth_settings)
    return PlatformTokenBroker(
        USER_ID,
        Platform.ZOOM,
        session_factory=session_factory,
        cipher=cipher,
        oauth_client=PlatformOAuthClient(config, transport=provider.transport),
        skew_seconds=SKEW,
    )


async def _connect(
    factory: async_sessionmaker[AsyncSession],
    cipher: TokenCipher,
    *,
    expires_at: datetime | None,
    refresh_token: str | None = "old-refresh",
) -> None:
    async with factory() as session:
        await upsert_connection(
            session,
            USER_ID,
            Platform.ZOOM,
            StoredTokens(
                access_token=cipher.encrypt("old-access"),
                refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
                expires_at=expires_at,
            ),
        )
        await session.commit()


async def _stored_refresh_token(
    factory: async_sessionmaker[AsyncSession], cipher: TokenCipher
) -> str | None:
    async with factory() as session:
        conn = await get_connection(session, USER_ID, Platform.ZOOM)
        assert conn is not None
        return cipher.decrypt(conn.refresh_token) if conn.refresh_token else None


class TestNeedsRefresh:
    def test_window(self, broker: PlatformTokenBroker) -> None:
        now = utcnow()
        assert broker.needs_refresh(now + timedelta(seconds=90), now)
        assert broker.needs_refresh(now + timedelta(seconds=SKEW), now)
        assert not broker.needs_refresh(now + timedelta(seconds=SKEW + 1), now)
        assert not broker.needs_refresh(None, now)


class TestProactiveRefresh:
    """A token close to expiry is refreshed before it is handed out."""

    async def test_fresh_token_is_returned_as_is(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=utcnow() + timedelta(hours=1))
        assert await broker.get_access_token() == "old-access"
        assert provider.requests == []

    async def test_expiring_token_is_refreshed(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        now = utcnow()
        await _connect(session_factory, cipher, expires_at=now + timedelta(seconds=90))
        assert await broker.get_access_token(now=now) == "new-access-1"
        assert len(provider.requests) == 1
        assert await _stored_refresh_token(session_factory, cipher) == "new-refresh-1"

    async def test_no_expiry_is_never_refreshed(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=None)
        assert await broker.get_access_token() == "old-access"
        assert provider.requests == []

    async def test_keeps_refresh_token_provider_did_not_resend(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        provider.queue(200, {"access_token": "rotated-access", "expires_in": 3600})
        await _connect(session_factory, cipher, expires_at=utcnow())
        assert await broker.get_access_token() == "rotated-access"
        assert await _stored_refresh_token(session_factory, cipher) == "old-refresh"

    async def test_missing_expires_in_clears_old_expiry(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        provider.queue(200, {"access_token": "a1"})
        await _connect(session_factory, cipher, expires_at=utcnow() + timedelta(seconds=30))
        for _ in range(3):
            assert await broker.get_access_token() == "a1"
        assert len(provider.requests) == 1
        async with session_factory() as session:
            conn = await get_connection(session, USER_ID, Platform.ZOOM)
            assert conn is not None
            assert conn.expires_at is None

    async def test_not_connected(self, broker: PlatformTokenBroker) -> None:
        with pytest.raises(ReconnectRequiredError, match="not connected"):
            await broker.get_access_token()


class TestSingleFlight:
    """Concurrent callers share one refresh."""

    async def test_one_provider_call(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        provider.delay = 0.05
        await _connect(session_factory, cipher, expires_at=utcnow())
        tokens = await asyncio.gather(
            broker.get_access_token(), broker.get_access_token()
        )
        assert tokens == ["new-access-1", "new-access-1"]
        assert len(provider.requests) == 1


class TestReactiveRefresh:
    """A 401 from the provider API triggers exactly one refresh and retry."""

    async def test_retry_once_after_401(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=utcnow() + timedelta(hours=1))
        seen: list[str] = []

        async def _api(token: str) -> httpx.Response:
            seen.append(token)
            return httpx.Response(401 if token == "old-access" else 200)

        resp = await broker.call(_api)
        assert resp.status_code == 200
        assert seen == ["old-access", "new-access-1"]
        assert len(provider.requests) == 1

    async def test_second_401_requires_reconnect(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=utcnow() + timedelta(hours=1))
        calls = 0

        async def _api(token: str) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(401)

        with pytest.raises(ReconnectRequiredError) as exc_info:
            await broker.call(_api)
        assert exc_info.value.code == "reconnect_required"
        assert calls == 2
        assert len(provider.requests) == 1

    async def test_other_status_is_passed_through(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=utcnow() + timedelta(hours=1))

        async def _api(token: str) -> httpx.Response:
            return httpx.Response(404)

        assert (await broker.call(_api)).status_code == 404
        assert provider.requests == []


class TestRefreshFailures:
    """Permanent failures ask for reconnect; transient ones do not."""

    async def test_no_refresh_token(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        await _connect(session_factory, cipher, expires_at=utcnow(), refresh_token=None)
        with pytest.raises(ReconnectRequiredError, match="no refresh token"):
            await broker.get_access_token()
        assert provider.requests == []

    async def test_provider_rejection(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        provider.queue(400, {"error": "invalid_grant"})
        await _connect(session_factory, cipher, expires_at=utcnow())
        with pytest.raises(ReconnectRequiredError):
            await broker.get_access_token()

    async def test_provider_outage(
        self, broker: PlatformTokenBroker, session_factory, cipher, provider
    ) -> None:
        provider.queue(502)
        await _connect(session_factory, cipher, expires_at=utcnow())
        with pytest.raises(PlatformRefreshError) as exc_info:
            await broker.get_access_token()
        assert exc_info.value.code == "platform_refresh_failed"
        assert await _stored_refresh_token(session_factory, cipher) == "old-refresh"


class TestRegistry:
    """Tests for broker sharing and client construction."""

    def _registry(
        self,
        session_factory,
        cipher: TokenCipher,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
    ) -> PlatformBrokerRegistry:
        return PlatformBrokerRegistry(
            session_factory=session_factory,
            cipher=cipher,
            platform_settings=platform_settings,
            auth_settings=auth_settings,
        )

    def test_same_broker_per_user_and_platform(
        self, session_factory, cipher, platform_settings, auth_settings
    ) -> None:
        registry = self._registry(session_factory, cipher, platform_settings, auth_settings)
        zoom = registry.get(USER_ID, Platform.ZOOM)
        assert registry.get(USER_ID, Platform.ZOOM) is zoom
        assert registry.get(USER_ID, Platform.ASANA) is not zoom
        assert registry.get("user-2", Platform.ZOOM) is not zoom

    def test_unconfigured_platform(
        self, session_factory, cipher, auth_settings
    ) -> None:
        registry = self._registry(
            session_factory, cipher, PlatformSettings(), auth_settings
        )
        with pytest.raises(ConfigurationError):
            registry.get(USER_ID, Platform.ASANA)
