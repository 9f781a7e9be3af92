"""Exception types shared across the authorization server and broker."""

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse

from mia.core.urls import with_query

HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403

NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


class ConfigurationError(RuntimeError):
    """Missing or malformed key material or secrets. Never caught."""


class OAuthError(Exception):
    """An RFC 6749 error response.

    When ``redirect_uri`` is set the error is delivered to the client as a
    redirect; that must only happen once the URI is known to belong to a
    registered client.
    """

    def __init__(
        self,
        error: str,
        description: str = "",
        *,
        status_code: int = HTTP_BAD_REQUEST,
        redirect_uri: str | None = None,
        state: str | None = None,
    ) -> None:
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description
        self.status_code = status_code
        self.redirect_uri = redirect_uri
        self.state = state

    def to_body(self) -> dict[str, str]:
        body = {"error": self.error}
        if self.description:
            body["error_description"] = self.description
        return body


class BearerAuthError(Exception):
    """Resource-server authentication failure for a bearer token."""

    def __init__(self, code: str, description: str) -> None:
        super().__init__(description)
        self.code = code
        self.description = description


class InsufficientScopeError(Exception):
    """Authenticated principal lacks a scope the resource requires."""

    def __init__(self, required: list[str]) -> None:
        super().__init__(f"Missing scopes: {' '.join(required)}")
        self.required = required


async def oauth_error_handler(_request: Request, exc: Exception) -> JSONResponse | RedirectResponse:
    """Render an OAuthError as JSON or as an error redirect."""
    assert isinstance(exc, OAuthError)
    if exc.redirect_uri:
        params = exc.to_body()
        if exc.state:
            params["state"] = exc.state
        return RedirectResponse(with_query(exc.redirect_uri, params), status_code=302)
    return JSONResponse(
        exc.to_body(), status_code=exc.status_code, headers=NO_STORE_HEADERS
    )


async def bearer_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Render a BearerAuthError as a 401 with a WWW-Authenticate challenge."""
    assert isinstance(exc, BearerAuthError)
    return JSONResponse(
        {"error": exc.code, "error_description": exc.description},
        status_code=HTTP_UNAUTHORIZED,
        headers={
            **NO_STORE_HEADERS,
            "WWW-Authenticate": 'Bearer error="invalid_token"',
        },
    )


async def insufficient_scope_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Render an InsufficientScopeError as a 403."""
    assert isinstance(exc, InsufficientScopeError)
    scope = " ".join(exc.required)
    return JSONResponse(
        {"error": "insufficient_scope", "error_description": str(exc)},
        status_code=HTTP_FORBIDDEN,
        headers={
            "WWW-Authenticate": f'Bearer error="insufficient_scope", scope="{scope}"',
        },
    )
