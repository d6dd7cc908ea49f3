# OAuth2 authorization server.
# Created: 2026-10-19
#
# Drives the authorization code flow:
#   authorize → user responds → code exchanged for a token → token refreshed.
#
# A code is CREATED, then RESPONDED (granted or denied). A granted code
# counts as EXCHANGED once the token store holds a token for it. Expiry is
# checked lazily whenever a code is used. Every check runs before anything
# is written, and every write that may race goes through a compare-and-set
# on the store.

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from ohmage_oauth.api.oauth2.models import (
    AuthorizationCode,
    AuthorizationCodeResponse,
    AuthorizationToken,
    OAuthClient,
    User,
)
from ohmage_oauth.api.oauth2.protocol import OAuthStore, SchemaRegistry, UserRegistry
from ohmage_oauth.api.oauth2.redirects import normalize_uri, supersedes, with_query
from ohmage_oauth.api.oauth2.scopes import ScopeValidator
from ohmage_oauth.errors import (
    AuthenticationError,
    InsufficientPermissionsError,
    InvalidArgumentError,
    StoreError,
    UnknownEntityError,
)
from ohmage_oauth.security.audit import AuditLogger, AuditSeverity

logger = logging.getLogger(__name__)

DEFAULT_CODE_TTL = timedelta(minutes=5)
DEFAULT_TOKEN_TTL = timedelta(minutes=30)

_BAD_USER_CREDENTIALS = "Unknown user or incorrect password."
_BAD_CLIENT_CREDENTIALS = "Unknown OAuth client or incorrect secret."


class AuthorizationServer:
    """OAuth2 authorization server for third-party clients."""

    def __init__(
        self,
        storage: OAuthStore,
        users: UserRegistry,
        streams: SchemaRegistry,
        surveys: SchemaRegistry,
        code_ttl: timedelta = DEFAULT_CODE_TTL,
        token_ttl: timedelta = DEFAULT_TOKEN_TTL,
        audit: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.storage = storage
        self.users = users
        self.scopes = ScopeValidator(streams, surveys)
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        self.audit = audit or AuditLogger(None)
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    # -- authentication helpers ----------------------------------------

    def authenticate_user(self, email: str, password: str) -> User:
        if not email or not password:
            raise AuthenticationError(_BAD_USER_CREDENTIALS)
        user = self.users.get_user_by_email(email)
        if user is None:
            logger.info("Unknown user: %s", email)
            raise AuthenticationError(_BAD_USER_CREDENTIALS)
        if not user.verify_password(password):
            logger.info("Incorrect password for user %s", user.user_id)
            raise AuthenticationError(_BAD_USER_CREDENTIALS)
        return user

    def authenticate_client(self, client_id: str, client_secret: str) -> OAuthClient:
        if not client_id:
            raise AuthenticationError("The OAuth client ID is missing.")
        client = self.storage.get_client(client_id)
        if client is None:
            logger.info("Unknown OAuth client: %s", client_id)
            raise AuthenticationError(_BAD_CLIENT_CREDENTIALS)
        if client_secret is None or not hmac.compare_digest(
            client.secret.encode(), client_secret.encode()
        ):
            logger.info("Incorrect secret for OAuth client %s", client_id)
            raise AuthenticationError(_BAD_CLIENT_CREDENTIALS)
        return client

    def _load_live_code(self, code_string: str) -> AuthorizationCode:
        code = self.storage.get_code(code_string)
        if code is None:
            raise InvalidArgumentError("The code is unknown.")
        if code.is_expired(self.now()):
            raise InvalidArgumentError("The code has expired.")
        return code

    # -- flow ----------------------------------------------------------

    def authorize(
        self,
        client_id: str,
        scope: str | None,
        redirect_uri: str | None = None,
        state: str | None = None,
    ) -> AuthorizationCode:
        """Create an authorization code for a client's access request."""
        logger.info("Creating an authorization code for client %s", client_id)
        client = self.storage.get_client(client_id)
        if client is None:
            raise AuthenticationError("The OAuth client is unknown.")

        scopes = self.scopes.validate(scope)

        if redirect_uri is None:
            logger.debug("Using the client's default redirect URI")
            validated_redirect = client.redirect_uri
        else:
            validated_redirect = normalize_uri(redirect_uri)
            supersedes(client.redirect_uri, validated_redirect)

        code = AuthorizationCode.create(
            oauth_client_id=client.client_id,
            scopes=scopes,
            redirect_uri=validated_redirect,
            state=state,
            ttl=self.code_ttl,
            now=self.now(),
        )
        self.storage.store_code(code)

        self.audit.log_oauth_event(
            action="oauth_code_created",
            actor=client.client_id,
            target=f"client:{client.client_id}",
            scopes=sorted(str(s) for s in scopes),
        )
        return code

    def respond(self, email: str, password: str, code_string: str, granted: bool) -> str:
        """Record a user's grant/deny verdict and return the client redirect.

        Replaying the same verdict is a no-op. The redirect does not reveal
        whether the verdict was new.
        """
        user = self.authenticate_user(email, password)
        code = self._load_live_code(code_string)

        response = code.response
        if response is None:
            logger.info("Recording the response of user %s to code", user.user_id)
            now = self.now()
            code = self.storage.set_code_response(
                code.code,
                AuthorizationCodeResponse(user.user_id, granted, creation_timestamp=now),
                used=now,
            )
            response = code.response
            if response is not None and response.user_id == user.user_id:
                self.audit.log_oauth_event(
                    action="oauth_code_response",
                    actor=user.user_id,
                    target=f"client:{code.oauth_client_id}",
                    granted=response.granted,
                )

        if response is None:
            raise StoreError("The code store did not keep the response.")
        if response.user_id != user.user_id:
            raise InvalidArgumentError("Another user already responded to this request.")
        if response.granted != granted:
            raise InvalidArgumentError(
                "The user has already responded to this request, "
                "however they gave a different answer last time."
            )

        return with_query(code.redirect_uri, {"code": code.code, "state": code.state})

    def exchange(
        self,
        client_id: str,
        client_secret: str,
        code_string: str,
        redirect_uri: str | None = None,
    ) -> AuthorizationToken:
        """Exchange a granted code for a token.

        Repeating the exchange returns the same token until it is refreshed.
        """
        client = self.authenticate_client(client_id, client_secret)

        code = self.storage.get_code(code_string)
        if code is None:
            raise InvalidArgumentError("The code is unknown.")
        if code.oauth_client_id != client.client_id:
            raise InvalidArgumentError("This code belongs to a different OAuth client.")
        if code.is_expired(self.now()):
            raise InvalidArgumentError("The code has expired.")

        if redirect_uri is None:
            if client.redirect_uri != code.redirect_uri:
                raise InvalidArgumentError(
                    "The code request provided a non-default redirect URI, "
                    "but this call did not provide a redirect URI."
                )
        elif normalize_uri(redirect_uri) != code.redirect_uri:
            raise InvalidArgumentError(
                "The code request redirect URI does not match the given redirect URI."
            )

        response = code.response
        if response is None:
            raise InvalidArgumentError("The user has not yet responded.")
        if not response.granted:
            raise InvalidArgumentError("The user declined the request.")
        if response.was_invalidated(self.now()):
            raise InvalidArgumentError("The user has revoked this authorization.")

        token = self.storage.get_token_by_code(code.code)
        if token is None:
            logger.info("Issuing the first token for a code of client %s", client.client_id)
            candidate = AuthorizationToken.from_code(code, self.token_ttl, now=self.now())
            token = self.storage.add_token_for_code(candidate)
            if token is candidate:
                self.audit.log_oauth_event(
                    action="oauth_token_issued",
                    actor=client.client_id,
                    target=f"user:{token.owner}",
                )

        if token.was_refreshed():
            raise InvalidArgumentError(
                "This code has already been used to create a token, "
                "and that token has already been refreshed."
            )
        return token

    def _chain_code(self, token: AuthorizationToken) -> str | None:
        """Find the code a token chain started from.

        Refreshed tokens do not carry the code, so walk back to the root.
        """
        current: AuthorizationToken | None = token
        seen: set[str] = set()
        while current is not None:
            if current.authorization_code is not None:
                return current.authorization_code
            if current.access_token in seen:
                break
            seen.add(current.access_token)
            current = self.storage.get_token_by_next_token(current.access_token)
        return None

    def refresh(
        self, client_id: str, client_secret: str, refresh_token: str
    ) -> AuthorizationToken:
        """Exchange a refresh token for the next token in its chain.

        Refreshing an already refreshed token returns its successor, as long
        as that successor has not been refreshed itself.
        """
        client = self.authenticate_client(client_id, client_secret)

        original = self.storage.get_token_by_refresh(refresh_token)
        if original is None:
            raise InvalidArgumentError("The token is unknown.")

        code_string = self._chain_code(original)
        if code_string is None:
            raise InvalidArgumentError(
                "This refresh token was not issued via an authorization code, "
                "so it cannot be refreshed via this call."
            )

        code = self.storage.get_code(code_string)
        if code is None:
            raise StoreError(f"Token chain references a missing code: {code_string}")
        if code.oauth_client_id != client.client_id:
            raise InvalidArgumentError("This code belongs to a different OAuth client.")
        if code.response is not None and code.response.was_invalidated(self.now()):
            raise InvalidArgumentError("The user has revoked this authorization.")

        if original.was_refreshed():
            return self._successor(original)

        if original.was_invalidated(self.now()):
            raise InvalidArgumentError("This token has been invalidated.")

        logger.info("Refreshing a token of user %s", original.owner)
        new_token = AuthorizationToken.from_token(original, self.token_ttl, now=self.now())
        self.storage.store_token(new_token)
        stored = self.storage.set_next_token(original.access_token, new_token.access_token)

        if stored.next_token != new_token.access_token:
            logger.info("A concurrent refresh won; discarding the duplicate token")
            self.storage.invalidate_token(new_token.access_token, self.now())
            return self._successor(stored)

        self.audit.log_oauth_event(
            action="oauth_token_refreshed",
            actor=client.client_id,
            target=f"user:{new_token.owner}",
        )
        return new_token

    def _successor(self, token: AuthorizationToken) -> AuthorizationToken:
        successor = self.storage.get_token(token.next_token or "")
        if successor is None:
            raise StoreError("A refreshed token points to a missing successor.")
        if successor.was_refreshed():
            raise InvalidArgumentError(
                "This token has already been refreshed and its refreshed "
                "token has also been refreshed."
            )
        return successor

    def invalidate(self, access_token: str) -> None:
        """Invalidate a token. Unknown tokens are ignored."""
        token = self.storage.invalidate_token(access_token, self.now())
        if token is None:
            logger.debug("Ignoring invalidation of an unknown token")
            return
        self.audit.log_oauth_event(
            action="auth_token_invalidated",
            actor=token.owner,
            target=f"user:{token.owner}",
        )

    # -- token verification and login -----------------------------------

    def verify_access_token(self, access_token: str) -> AuthorizationToken | None:
        """Return the token if it may still be used as a credential."""
        token = self.storage.get_token(access_token)
        if token is None:
            return None
        now = self.now()
        if not token.is_valid(now) or token.is_expired(now):
            return None
        return token

    def login(self, email: str, password: str) -> AuthorizationToken:
        """Issue a token directly from a user's credentials."""
        user = self.authenticate_user(email, password)
        token = AuthorizationToken.for_user(user.user_id, self.token_ttl, now=self.now())
        self.storage.store_token(token)
        logger.info("Issued a login token for user %s", user.user_id)
        return token

    # -- clients -------------------------------------------------------

    def register_client(
        self, owner: str, name: str, description: str, redirect_uri: str
    ) -> OAuthClient:
        if not name:
            raise InvalidArgumentError("The name is missing.")
        client = OAuthClient.create(
            owner=owner,
            name=name,
            description=description,
            redirect_uri=normalize_uri(redirect_uri),
        )
        self.storage.add_client(client)
        self.audit.log_oauth_event(
            action="oauth_client_registered",
            actor=owner,
            target=f"client:{client.client_id}",
        )
        return client

    def get_client(self, client_id: str) -> OAuthClient:
        client = self.storage.get_client(client_id)
        if client is None:
            raise UnknownEntityError("The client is unknown.")
        return client

    def list_client_ids(self, owner: str) -> list[str]:
        return self.storage.get_client_ids(owner)

    # -- responded codes -------------------------------------------------

    def list_codes(self, user_id: str) -> list[str]:
        return sorted(c.code for c in self.storage.get_codes_for_user(user_id))

    def get_code(self, code_string: str, requester: str | None) -> AuthorizationCode:
        """Return a code. Once responded to, only the responder may read it."""
        code = self.storage.get_code(code_string)
        if code is None:
            raise UnknownEntityError("The code is unknown.")
        if code.response is not None:
            if requester is None:
                raise AuthenticationError("No auth information was given.")
            if requester != code.response.user_id:
                raise InsufficientPermissionsError(
                    "The requesting user is not the responder for this code."
                )
        return code

    def revoke_code(self, code_string: str, requester: str) -> AuthorizationCode:
        """Revoke the requester's response to a code.

        The code can no longer be exchanged, its token chain can no longer be
        refreshed, and the chain's live token is invalidated.
        """
        code = self.storage.get_code(code_string)
        if code is None:
            raise UnknownEntityError("The code is unknown.")
        if code.response is None:
            raise InvalidArgumentError("The code has not been responded to.")
        if code.response.user_id != requester:
            raise InsufficientPermissionsError(
                "The requesting user is not the responder for this code."
            )

        now = self.now()
        code = self.storage.invalidate_code_response(code.code, now)

        token = self.storage.get_token_by_code(code.code)
        while token is not None and token.next_token is not None:
            token = self.storage.get_token(token.next_token)
        if token is not None:
            self.storage.invalidate_token(token.access_token, now)

        self.audit.log_oauth_event(
            action="oauth_code_revoked",
            actor=requester,
            target=f"client:{code.oauth_client_id}",
            severity=AuditSeverity.WARNING,
        )
        return code


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    """Return the process-wide server, built from settings on first use."""
    global _server
    if _server is None:
        _server = build_server_from_settings()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None


def build_server_from_settings() -> AuthorizationServer:
    from ohmage_oauth.api.oauth2.storage import (
        InMemorySchemaRegistry,
        InMemoryUserRegistry,
        OAuthStorage,
    )
    from ohmage_oauth.config import get_config_dir, get_settings
    from ohmage_oauth.security.audit import get_audit_logger

    settings = get_settings()
    persist_path = get_config_dir() / "oauth_state.json" if settings.persist_tokens else None
    users = (
        InMemoryUserRegistry.from_file(settings.users_file)
        if settings.users_file is not None
        else InMemoryUserRegistry()
    )
    return AuthorizationServer(
        storage=OAuthStorage(persist_path),
        users=users,
        streams=InMemorySchemaRegistry.from_entries(settings.streams),
        surveys=InMemorySchemaRegistry.from_entries(settings.surveys),
        code_ttl=settings.code_ttl,
        token_ttl=settings.token_ttl,
        audit=get_audit_logger(),
    )
