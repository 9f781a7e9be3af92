"""Per-platform OAuth app configuration and client-credential conventions."""

import base64

from pydantic import BaseModel, ConfigDict

from mia.core.errors import ConfigurationError
from mia.core.settings import AuthSettings, PlatformSettings
from mia.platforms.types import Platform


class BasicAuthCredentials(BaseModel):
    """Client credentials sent as an HTTP Basic ``Authorization`` header."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str

    def auth_headers(self) -> dict[str, str]:
        raw = f"{self.client_id}:{self.client_secret}".encode()
        return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}

    def body_params(self) -> dict[str, str]:
        return {}


class ClientSecretPostCredentials(BaseModel):
    """Client credentials sent as form fields in the request body."""

    model_config = ConfigDict(frozen=True)

    client_id: str
    client_secret: str

    def auth_headers(self) -> dict[str, str]:
        return {}

    def body_params(self) -> dict[str, str]:
        return {"client_id": self.client_id, "client_secret": self.client_secret}


CredentialStrategy = BasicAuthCredentials | ClientSecretPostCredentials


class PlatformConfig(BaseModel):
    """Everything needed to talk to one provider's OAuth endpoints."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    display_name: str
    auth_url: str
    token_url: str
    scopes: tuple[str, ...]
    send_scope: bool
    pkce_required: bool
    redirect_uri: str
    credentials: CredentialStrategy

    @property
    def client_id(self) -> str:
        return self.credentials.client_id


def _redirect_uri(configured: str, platform: Platform, auth: AuthSettings) -> str:
    return configured or f"{auth.issuer}/api/auth/{platform.value}/callback"


def build_platform_config(
    platform: Platform, settings: PlatformSettings, auth: AuthSettings
) -> PlatformConfig:
    """Return the config for ``platform``; every enum member must be handled."""
    match platform:
        case Platform.ZOOM:
            return PlatformConfig(
                platform=platform,
                display_name="Zoom",
                auth_url="https://zoom.us/oauth/authorize",
                token_url="https://zoom.us/oauth/token",
                scopes=(
                    "meeting:read:meeting",
                    "cloud_recording:read:list_user_recordings",
                    "cloud_recording:read:recording",
                    "user:read:user",
                ),
                send_scope=True,
                pkce_required=True,
                redirect_uri=_redirect_uri(settings.zoom_redirect_uri, platform, auth),
                credentials=BasicAuthCredentials(
                    client_id=settings.zoom_client_id,
                    client_secret=settings.zoom_client_secret,
                ),
            )
        case Platform.ASANA:
            return PlatformConfig(
                platform=platform,
                display_name="Asana",
                auth_url="https://app.asana.com/-/oauth_authorize",
                token_url="https://app.asana.com/-/oauth_token",
                scopes=("default",),
                send_scope=False,
                pkce_required=False,
                redirect_uri=_redirect_uri(settings.asana_redirect_uri, platform, auth),
                credentials=ClientSecretPostCredentials(
                    client_id=settings.asana_client_id,
                    client_secret=settings.asana_client_secret,
                ),
            )


def require_configured(config: PlatformConfig) -> PlatformConfig:
    """Fail loudly when the OAuth app credentials are missing."""
    if not config.credentials.client_id or not config.credentials.client_secret:
        prefix = config.platform.value.upper()
        raise ConfigurationError(
            f"{prefix}_CLIENT_ID and {prefix}_CLIENT_SECRET must be set"
        )
    return config
