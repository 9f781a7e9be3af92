"""Per-(user, platform) access to decrypted, fresh third-party tokens.

Tokens are refreshed proactively when they are about to expire and
reactively when the provider API answers 401. Refreshes for the same
(user, platform) are single-flighted: an ``asyncio.Lock`` per broker in
process, plus ``SELECT ... FOR UPDATE`` on the connection row, so a caller
that waited on the lock reuses the token the winner just stored instead of
spending the (possibly rotated) refresh token a second time.
"""

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mia.core.clock import as_utc, utcnow
from mia.core.settings import REFRESH_SKEW_DEFAULT, AuthSettings, PlatformSettings
from mia.crypto.token_cipher import TokenCipher
from mia.db.models_platform import PlatformConnectionEntity
from mia.db.repo_platform import StoredTokens, get_connection, store_tokens
from mia.platforms.errors import ProviderRejectedError, ReconnectRequiredError
from mia.platforms.oauth_client import PlatformOAuthClient
from mia.platforms.strategies import build_platform_config, require_configured
from mia.platforms.types import Platform, ProviderTokens

logger = logging.getLogger(__name__)

HTTP_UNAUTHORIZED = 401

ApiCall = Callable[[str], Awaitable[httpx.Response]]


class PlatformTokenBroker:
    """Hands out a valid access token for one user's platform connection."""

    def __init__(
        self,
        user_id: str,
        platform: Platform,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        oauth_client: PlatformOAuthClient,
        skew_seconds: int = REFRESH_SKEW_DEFAULT,
    ) -> None:
        self.user_id = user_id
        self.platform = platform
        self._session_factory = session_factory
        self._cipher = cipher
        self._client = oauth_client
        self._skew = timedelta(seconds=skew_seconds)
        self._lock = asyncio.Lock()

    def needs_refresh(self, expires_at: datetime | None, now: datetime) -> bool:
        """True when the token expires within the skew window."""
        if expires_at is None:
            return False
        return as_utc(expires_at) - now <= self._skew

    async def _load(
        self, session: AsyncSession, *, for_update: bool = False
    ) -> PlatformConnectionEntity:
        conn = await get_connection(
            session, self.user_id, self.platform, for_update=for_update
        )
        if conn is None:
            raise ReconnectRequiredError(self.platform, "not connected")
        return conn

    async def get_access_token(self, *, now: datetime | None = None) -> str:
        """Decrypted access token, refreshed first if it is about to expire."""
        now = now or utcnow()
        async with self._session_factory() as session:
            conn = await self._load(session)
            token = self._cipher.decrypt(conn.access_token)
            if not self.needs_refresh(conn.expires_at, now):
                conn.last_used_at = now
                await session.commit()
                return token
        logger.info(
            "Proactively refreshing %s token for user %s",
            self.platform.value,
            self.user_id,
        )
        return await self.force_refresh(token, now=now)

    async def force_refresh(
        self, stale_token: str | None = None, *, now: datetime | None = None
    ) -> str:
        """Refresh under the per-connection lock and return the new token.

        If the stored token already differs from ``stale_token`` and is not
        near expiry, another caller refreshed first and its token is reused.
        """
        async with self._lock:
            now = now or utcnow()
            async with self._session_factory() as session:
                conn = await self._load(session, for_update=True)
                current = self._cipher.decrypt(conn.access_token)
                if (
                    stale_token is not None
                    and current != stale_token
                    and not self.needs_refresh(conn.expires_at, now)
                ):
                    await session.commit()
                    return current
                if not conn.refresh_token:
                    raise ReconnectRequiredError(self.platform, "no refresh token")

                refresh_token = self._cipher.decrypt(conn.refresh_token)
                try:
                    tokens = await self._client.refresh(refresh_token)
                except ProviderRejectedError as exc:
                    raise ReconnectRequiredError(
                        self.platform, "refresh was rejected by the provider"
                    ) from exc

                store_tokens(conn, self._merge(conn, tokens, now))
                conn.last_used_at = now
                await session.commit()
        logger.info("Refreshed %s token for user %s", self.platform.value, self.user_id)
        return tokens.access_token

    def _merge(
        self, conn: PlatformConnectionEntity, tokens: ProviderTokens, now: datetime
    ) -> StoredTokens:
        """New token material, keeping the refresh token if it was not resent.

        A response without ``expires_in`` clears the stored expiry; the old
        value belongs to the token being replaced.
        """
        expires_at = None
        if tokens.expires_in is not None:
            expires_at = now + timedelta(seconds=tokens.expires_in)
        refresh_token = conn.refresh_token
        if tokens.refresh_token:
            refresh_token = self._cipher.encrypt(tokens.refresh_token)
        return StoredTokens(
            access_token=self._cipher.encrypt(tokens.access_token),
            refresh_token=refresh_token,
            expires_at=expires_at,
            scope=tokens.scope or conn.scope,
            token_type=tokens.token_type or conn.token_type,
        )

    async def call(self, fn: ApiCall) -> httpx.Response:
        """Run ``fn(access_token)``; on 401 refresh once and retry once."""
        token = await self.get_access_token()
        resp = await fn(token)
        if resp.status_code != HTTP_UNAUTHORIZED:
            return resp
        logger.info(
            "%s API returned 401 for user %s; refreshing",
            self.platform.value,
            self.user_id,
        )
        token = await self.force_refresh(token)
        resp = await fn(token)
        if resp.status_code == HTTP_UNAUTHORIZED:
            raise ReconnectRequiredError(
                self.platform, "access token was rejected after refresh"
            )
        return resp


class PlatformBrokerRegistry:
    """Builds provider clients and shares one broker per (user, platform)."""

    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
        platform_settings: PlatformSettings,
        auth_settings: AuthSettings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.cipher = cipher
        self._platform_settings = platform_settings
        self._auth_settings = auth_settings
        self._transport = transport
        self._brokers: weakref.WeakValueDictionary[
            tuple[str, Platform], PlatformTokenBroker
        ] = weakref.WeakValueDictionary()

    def oauth_client(self, platform: Platform) -> PlatformOAuthClient:
        config = build_platform_config(
            platform, self._platform_settings, self._auth_settings
        )
        return PlatformOAuthClient(
            require_configured(config),
            timeout=self._platform_settings.platform_http_timeout,
            transport=self._transport,
        )

    def get(self, user_id: str, platform: Platform) -> PlatformTokenBroker:
        """The live broker for (user, platform), created on first use."""
        key = (user_id, platform)
        broker = self._brokers.get(key)
        if broker is None:
            broker = PlatformTokenBroker(
                user_id,
                platform,
                session_factory=self._session_factory,
                cipher=self.cipher,
                oauth_client=self.oauth_client(platform),
                skew_seconds=self._platform_settings.platform_refresh_skew_seconds,
            )
            self._brokers[key] = broker
        return broker
