# Interfaces of the collaborators the authorization server depends on.
# Created: 2026-10-19
#
# The server never reaches for a global store; it is handed objects that
# satisfy these protocols. OAuthStorage in storage.py implements the first
# three together.

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ohmage_oauth.api.oauth2.models import (
    AuthorizationCode,
    AuthorizationCodeResponse,
    AuthorizationToken,
    OAuthClient,
    User,
)


class ClientRegistry(Protocol):
    """Lookup and registration of third-party clients."""

    def get_client(self, client_id: str) -> OAuthClient | None: ...

    def add_client(self, client: OAuthClient) -> None: ...

    def get_client_ids(self, owner: str) -> list[str]: ...


class CodeStore(Protocol):
    """Authorization codes keyed by the code string."""

    def store_code(self, code: AuthorizationCode) -> None: ...

    def get_code(self, code: str) -> AuthorizationCode | None: ...

    def get_codes_for_user(self, user_id: str) -> list[AuthorizationCode]: ...

    def set_code_response(
        self, code: str, response: AuthorizationCodeResponse, used: datetime
    ) -> AuthorizationCode:
        """Attach *response* unless one is already there.

        Returns the stored code, which carries the first response written.
        """
        ...

    def invalidate_code_response(self, code: str, when: datetime) -> AuthorizationCode:
        """Stamp the stored response as revoked (first stamp wins)."""
        ...


class TokenStore(Protocol):
    """Tokens keyed by access token, indexed by refresh token, code and chain."""

    def store_token(self, token: AuthorizationToken) -> None: ...

    def add_token_for_code(self, token: AuthorizationToken) -> AuthorizationToken:
        """Store *token* unless its code already produced one.

        Returns whichever token is stored for the code afterwards.
        """
        ...

    def get_token(self, access_token: str) -> AuthorizationToken | None: ...

    def get_token_by_refresh(self, refresh_token: str) -> AuthorizationToken | None: ...

    def get_token_by_code(self, code: str) -> AuthorizationToken | None: ...

    def get_token_by_next_token(self, access_token: str) -> AuthorizationToken | None:
        """Return the token that was refreshed into *access_token*."""
        ...

    def set_next_token(self, access_token: str, next_token: str) -> AuthorizationToken:
        """Chain *next_token* onto a token unless it is already chained.

        Returns the stored token.
        """
        ...

    def invalidate_token(self, access_token: str, when: datetime) -> AuthorizationToken | None:
        """Stamp a token invalid (first stamp wins). ``None`` if unknown."""
        ...


class UserRegistry(Protocol):
    """Read-only access to user accounts."""

    def get_user_by_email(self, email: str) -> User | None: ...


class SchemaRegistry(Protocol):
    """Existence oracle for stream or survey schemas."""

    def exists(self, schema_id: str, schema_version: int | None = None) -> bool: ...


class OAuthStore(ClientRegistry, CodeStore, TokenStore, Protocol):
    """The three stores together, as the server uses them."""
