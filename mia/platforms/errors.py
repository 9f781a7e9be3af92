"""Typed failures surfaced by the platform token broker."""

from mia.platforms.types import Platform


class PlatformTokenError(Exception):
    """Base class; ``code`` is the machine-readable reason."""

    code = "platform_error"

    def __init__(self, platform: Platform, message: str) -> None:
        super().__init__(message)
        self.platform = platform
        self.message = message

    def to_body(self) -> dict[str, str]:
        return {
            "error": self.code,
            "platform": self.platform.value,
            "error_description": self.message,
        }


class ReconnectRequiredError(PlatformTokenError):
    """The user must re-authorize the platform; retrying will not help."""

    code = "reconnect_required"

    def __init__(self, platform: Platform, reason: str) -> None:
        super().__init__(
            platform,
            f"Please reconnect your {platform.value.capitalize()} account ({reason})",
        )
        self.reason = reason


class PlatformRefreshError(PlatformTokenError):
    """A refresh failed transiently (timeout, network error, provider 5xx)."""

    code = "platform_refresh_failed"


class ProviderRejectedError(PlatformTokenError):
    """The provider token endpoint answered 4xx."""

    code = "provider_rejected"

    def __init__(self, platform: Platform, status_code: int, message: str) -> None:
        super().__init__(platform, message)
        self.status_code = status_code
