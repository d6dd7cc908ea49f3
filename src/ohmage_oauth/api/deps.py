# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

from fastapi import Header, HTTPException, Request

from ohmage_oauth.api.oauth2.models import AuthorizationToken
from ohmage_oauth.api.oauth2.server import AuthorizationServer, get_oauth_server
from ohmage_oauth.config import get_settings
from ohmage_oauth.errors import AuthenticationError


def get_server() -> AuthorizationServer:
    """Dependency wrapper so routes never touch the singleton directly."""
    return get_oauth_server()


def parse_auth_header(header: str | None) -> str:
    """Pull the access token out of ``Authorization: ohmage <token>``.

    The scheme comes from settings; ``Bearer`` is accepted as a synonym.
    """
    scheme = get_settings().auth_header_scheme
    if not header:
        raise AuthenticationError("No auth information was given.")
    parts = header.split(" ")
    if len(parts) != 2 or not parts[1]:
        raise AuthenticationError("The auth header is malformed.")
    if parts[0].lower() not in (scheme.lower(), "bearer"):
        raise AuthenticationError(f"The auth header is not for '{scheme}'.")
    return parts[1]


def require_auth_token(
    request: Request,
    authorization: str | None = Header(default=None),
) -> AuthorizationToken:
    """Resolve the caller's token; 401 unless it is known, valid and unexpired."""
    access_token = parse_auth_header(authorization)
    token = get_server().verify_access_token(access_token)
    if token is None:
        raise AuthenticationError("The token is unknown, expired or invalidated.")
    request.state.auth_token = token
    return token


def optional_auth_token(
    request: Request,
    authorization: str | None = Header(default=None),
) -> AuthorizationToken | None:
    if authorization is None:
        return None
    return require_auth_token(request, authorization)


async def auth_rate_limit(request: Request) -> None:
    """Throttle credential endpoints per client IP."""
    from ohmage_oauth.security.rate_limiter import get_auth_limiter

    client_ip = request.client.host if request.client else "unknown"
    info = get_auth_limiter().check(client_ip)
    if not info.allowed:
        raise HTTPException(status_code=429, detail="Too many requests", headers=info.headers())
