"""Shared test fixtures for mia."""

import asyncio
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from pathlib import Path

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from mia.core.app import create_app
from mia.core.settings import AuthSettings, PlatformSettings
from mia.crypto.jwt_codec import TokenCodec
from mia.crypto.keys import KeyManager, generate_rsa_keypair
from mia.crypto.password import hash_password
from mia.crypto.token_cipher import TokenCipher
from mia.crypto.types import SigningKeyData
from mia.db.base import BaseEntity
from mia.db.engine import Database, get_session
from mia.db.models_user import UserEntity
from mia.oidc.token_service import grant_for_user, issue_tokens

TEST_ISSUER = "http://localhost:8000"
ENCRYPTION_KEY = secrets.token_hex(32)
USER_ID = "user-1"
USER_EMAIL = "ada@example.com"
USER_PASSWORD = "correct-horse-battery"


def _enable_wal(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()


class FakeProvider:
    """Scripted third-party token endpoint behind an ``httpx.MockTransport``.

    Queued responses are served first; afterwards every call mints a new
    access/refresh pair.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.requests: list[httpx.Request] = []
        self.queued: list[httpx.Response] = []
        self.delay = delay
        self.issued = 0

    def queue(self, status_code: int, body: dict | None = None) -> None:
        self.queued.append(httpx.Response(status_code, json=body or {}))

    async def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.queued:
            return self.queued.pop(0)
        self.issued += 1
        return httpx.Response(
            200,
            json={
                "access_token": f"new-access-{self.issued}",
                "refresh_token": f"new-refresh-{self.issued}",
                "expires_in": 3600,
                "token_type": "bearer",
            },
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)


@pytest.fixture(scope="session")
def keypair() -> SigningKeyData:
    """One RSA keypair for the whole run (generation is slow)."""
    return generate_rsa_keypair()


@pytest.fixture
def auth_settings(keypair: SigningKeyData) -> AuthSettings:
    return AuthSettings(
        issuer_url=TEST_ISSUER,
        jwt_private_key=keypair.private_key_pem,
        jwt_public_key=keypair.public_key_pem,
        jwt_key_id=keypair.kid,
        token_encryption_key=ENCRYPTION_KEY,
    )


@pytest.fixture
def platform_settings() -> PlatformSettings:
    return PlatformSettings(
        zoom_client_id="zoom-client",
        zoom_client_secret="zoom-secret",
        asana_client_id="asana-client",
        asana_client_secret="asana-secret",
    )


@pytest.fixture
def codec(auth_settings: AuthSettings) -> TokenCodec:
    return TokenCodec(
        KeyManager.from_settings(auth_settings),
        issuer=auth_settings.issuer,
        resource=auth_settings.resource,
    )


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(ENCRYPTION_KEY)


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
async def db_engine() -> AsyncIterator[AsyncEngine]:
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)
    _enable_wal(engine)
    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """File-backed SQLite engine, for tests that need independent sessions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'mia.db'}")
    _enable_wal(engine)
    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    """Create an in-memory SQLite async session for tests."""
    factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
async def user(db_session: AsyncSession) -> UserEntity:
    """Insert (and commit) a test user with a password."""
    entity = UserEntity(
        id=USER_ID,
        email=USER_EMAIL,
        email_verified=True,
        name="Ada Lovelace",
        picture="https://example.com/ada.png",
        password_hash=hash_password(USER_PASSWORD),
        is_active=True,
    )
    db_session.add(entity)
    await db_session.commit()
    return entity


@pytest.fixture
async def client(
    db_session: AsyncSession,
    db_engine: AsyncEngine,
    auth_settings: AuthSettings,
    platform_settings: PlatformSettings,
    provider: FakeProvider,
) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client with DB session override."""
    app = create_app(
        auth_settings,
        platform_settings=platform_settings,
        database=Database(db_engine),
        http_transport=provider.transport,
    )

    async def _override_session() -> AsyncIterator[AsyncSession]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


BearerFactory = Callable[..., Awaitable[dict[str, str]]]


@pytest.fixture
def bearer(db_session: AsyncSession, codec: TokenCodec) -> BearerFactory:
    """Issue a tracked access token for a user and return auth headers."""

    async def _issue(
        user: UserEntity,
        scope: str = "openid profile email",
        client_id: str = "agent-client",
    ) -> dict[str, str]:
        tokens = await issue_tokens(
            db_session, codec, grant_for_user(user, client_id=client_id, scope=scope)
        )
        await db_session.commit()
        return {"Authorization": f"Bearer {tokens.access_token}"}

    return _issue
