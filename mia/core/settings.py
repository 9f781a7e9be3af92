"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict

ACCESS_TOKEN_TTL_DEFAULT = 3600
REFRESH_TOKEN_TTL_DEFAULT = 2_592_000
AUTH_CODE_TTL_DEFAULT = 600
AUTH_REQUEST_TTL_DEFAULT = 600
SESSION_TTL_DEFAULT = 86_400
REFRESH_SKEW_DEFAULT = 120
HTTP_TIMEOUT_DEFAULT = 15.0
DB_POOL_SIZE_DEFAULT = 5
DB_MAX_OVERFLOW_DEFAULT = 10
DB_PORT_DEFAULT = 5432


class DatabaseSettings(BaseSettings):
    """PostgreSQL connection settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_DB_")

    host: str = "localhost"
    port: int = DB_PORT_DEFAULT
    user: str = "mia"
    password: str = "mia"
    database: str = "mia"
    pool_size: int = DB_POOL_SIZE_DEFAULT
    max_overflow: int = DB_MAX_OVERFLOW_DEFAULT

    @property
    def async_url(self) -> str:
        """Build async PostgreSQL connection URL."""
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )


class AuthSettings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(env_prefix="AUTH_")

    issuer_url: str = "http://localhost:8000"
    resource_url: str = ""
    cors_origins: str = ""
    log_level: str = "INFO"

    jwt_private_key: str = ""
    jwt_public_key: str = ""
    jwt_key_id: str = "mia-key-1"
    jwt_previous_public_key: str = ""
    jwt_previous_key_id: str = ""

    token_encryption_key: str = ""

    access_token_ttl: int = ACCESS_TOKEN_TTL_DEFAULT
    refresh_token_ttl: int = REFRESH_TOKEN_TTL_DEFAULT
    auth_code_ttl: int = AUTH_CODE_TTL_DEFAULT
    auth_request_ttl: int = AUTH_REQUEST_TTL_DEFAULT
    session_ttl: int = SESSION_TTL_DEFAULT

    trusted_redirect_domains: str = "chatgpt.com,openai.com"
    allow_plain_pkce: bool = False
    rotate_refresh_tokens: bool = False

    @property
    def issuer(self) -> str:
        """Issuer URL without a trailing slash."""
        return self.issuer_url.rstrip("/")

    @property
    def resource(self) -> str:
        """Audience of access tokens: the protected resource identifier."""
        return self.resource_url.rstrip("/") or f"{self.issuer}/mcp"

    def get_cors_origin_list(self) -> list[str]:
        """Parse comma-separated CORS origins."""
        return _split_csv(self.cors_origins)

    def get_trusted_domains(self) -> list[str]:
        """Parse comma-separated trusted redirect domains."""
        return [d.lower() for d in _split_csv(self.trusted_redirect_domains)]


class PlatformSettings(BaseSettings):
    """Third-party OAuth app credentials and broker tuning."""

    model_config = SettingsConfigDict(env_prefix="")

    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_redirect_uri: str = ""
    asana_client_id: str = ""
    asana_client_secret: str = ""
    asana_redirect_uri: str = ""

    platform_refresh_skew_seconds: int = REFRESH_SKEW_DEFAULT
    platform_http_timeout: float = HTTP_TIMEOUT_DEFAULT


def _split_csv(value: str) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]
