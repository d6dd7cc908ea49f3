# OAuth2 data models.
# Created: 2026-10-19
#
# Records are frozen. Every state change (responding to a code, chaining a
# refreshed token, invalidating) returns a new value; the store decides
# whether that value may be written.

from __future__ import annotations

import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from ohmage_oauth.errors import InvalidArgumentError

TOKEN_TYPE = "ohmage"


def _now() -> datetime:
    return datetime.now(UTC)


def _random_token() -> str:
    return secrets.token_urlsafe(32)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class OAuthClient:
    """Registered third-party application."""

    client_id: str
    secret: str
    owner: str
    name: str
    description: str
    redirect_uri: str

    @classmethod
    def create(cls, owner: str, name: str, description: str, redirect_uri: str) -> OAuthClient:
        return cls(
            client_id=str(uuid.uuid4()),
            secret=_random_token(),
            owner=owner,
            name=name,
            description=description,
            redirect_uri=redirect_uri,
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Client information that is safe to show anyone (no secret)."""
        return {
            "client_id": self.client_id,
            "owner": self.owner,
            "name": self.name,
            "description": self.description,
            "redirect_uri": self.redirect_uri,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.to_public_dict()
        data["shared_secret"] = self.secret
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OAuthClient:
        return cls(
            client_id=data["client_id"],
            secret=data["shared_secret"],
            owner=data["owner"],
            name=data.get("name", ""),
            description=data.get("description", ""),
            redirect_uri=data["redirect_uri"],
        )


class ScopeType(str, Enum):
    STREAM = "stream"
    SURVEY = "survey"


SCOPE_PREFIX = ("omh", "ohmage")


@dataclass(frozen=True)
class Scope:
    """One requested capability: access to a stream or a survey schema."""

    type: ScopeType
    schema_id: str
    schema_version: int | None = None

    @classmethod
    def parse(cls, text: str) -> Scope:
        """Parse ``omh:ohmage:<stream|survey>:<schema_id>``."""
        parts = text.split(":")
        if len(parts) != 4:
            raise InvalidArgumentError(
                "The scope must be four parts each separated by a colon "
                f"(omh:ohmage:<stream | survey>:<schema_id>): {text}"
            )
        if parts[0] != SCOPE_PREFIX[0]:
            raise InvalidArgumentError(f'The scope must begin with "omh": {text}')
        if parts[1] != SCOPE_PREFIX[1]:
            raise InvalidArgumentError(f'The second part of the scope must be "ohmage": {text}')
        try:
            scope_type = ScopeType(parts[2])
        except ValueError:
            raise InvalidArgumentError(
                f'The third part of the scope must be either "stream" or "survey": {text}'
            ) from None
        if not parts[3]:
            raise InvalidArgumentError(f"The scope is missing its schema ID: {text}")
        return cls(type=scope_type, schema_id=parts[3])

    def __str__(self) -> str:
        return ":".join((*SCOPE_PREFIX, self.type.value, self.schema_id))

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "schema_id": self.schema_id,
            "schema_version": self.schema_version,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scope:
        return cls(
            type=ScopeType(data["type"]),
            schema_id=data["schema_id"],
            schema_version=data.get("schema_version"),
        )


@dataclass(frozen=True)
class AuthorizationCodeResponse:
    """A user's verdict on an authorization code."""

    user_id: str
    granted: bool
    creation_timestamp: datetime = field(default_factory=_now)
    invalidation_timestamp: datetime | None = None

    def was_invalidated(self, now: datetime | None = None) -> bool:
        if self.invalidation_timestamp is None:
            return False
        return self.invalidation_timestamp <= (now or _now())

    def invalidated(self, when: datetime) -> AuthorizationCodeResponse:
        """Return a copy marked as revoked. The first revocation time sticks."""
        if self.invalidation_timestamp is not None:
            return self
        return replace(self, invalidation_timestamp=when)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "granted": self.granted,
            "creation_timestamp": _ts(self.creation_timestamp),
            "invalidation_timestamp": _ts(self.invalidation_timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationCodeResponse:
        return cls(
            user_id=data["user_id"],
            granted=bool(data["granted"]),
            creation_timestamp=_parse_ts(data.get("creation_timestamp")) or _now(),
            invalidation_timestamp=_parse_ts(data.get("invalidation_timestamp")),
        )


@dataclass(frozen=True)
class AuthorizationCode:
    """Short-lived delegation request created by ``authorize``."""

    code: str
    oauth_client_id: str
    scopes: frozenset[Scope]
    redirect_uri: str
    state: str | None
    creation_timestamp: datetime
    expiration_timestamp: datetime
    used_timestamp: datetime | None = None
    response: AuthorizationCodeResponse | None = None

    def __post_init__(self) -> None:
        if not self.scopes:
            raise InvalidArgumentError("The scopes are empty.")
        if self.creation_timestamp > self.expiration_timestamp:
            raise InvalidArgumentError("The code expires before it was created.")

    @classmethod
    def create(
        cls,
        oauth_client_id: str,
        scopes: frozenset[Scope],
        redirect_uri: str,
        state: str | None,
        ttl: timedelta,
        now: datetime | None = None,
    ) -> AuthorizationCode:
        now = now or _now()
        return cls(
            code=_random_token(),
            oauth_client_id=oauth_client_id,
            scopes=frozenset(scopes),
            redirect_uri=redirect_uri,
            state=state,
            creation_timestamp=now,
            expiration_timestamp=now + ttl,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expiration_timestamp < (now or _now())

    def with_response(
        self, response: AuthorizationCodeResponse, used: datetime
    ) -> AuthorizationCode:
        return replace(self, response=response, used_timestamp=used)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "oauth_client_id": self.oauth_client_id,
            "scopes": [s.to_dict() for s in sorted(self.scopes, key=str)],
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "creation_timestamp": _ts(self.creation_timestamp),
            "expiration_timestamp": _ts(self.expiration_timestamp),
            "used_timestamp": _ts(self.used_timestamp),
            "response": self.response.to_dict() if self.response else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationCode:
        return cls(
            code=data["code"],
            oauth_client_id=data["oauth_client_id"],
            scopes=frozenset(Scope.from_dict(s) for s in data["scopes"]),
            redirect_uri=data["redirect_uri"],
            state=data.get("state"),
            creation_timestamp=datetime.fromisoformat(data["creation_timestamp"]),
            expiration_timestamp=datetime.fromisoformat(data["expiration_timestamp"]),
            used_timestamp=_parse_ts(data.get("used_timestamp")),
            response=AuthorizationCodeResponse.from_dict(data["response"])
            if data.get("response")
            else None,
        )


@dataclass(frozen=True)
class AuthorizationToken:
    """Access + refresh token pair.

    Tokens form a singly linked chain through ``next_token``: refreshing a
    token creates its successor and records the successor's access token on
    the original. Only ``next_token`` and ``invalidation_timestamp`` are
    ever set after creation, and each only once.
    """

    access_token: str
    refresh_token: str
    owner: str
    granted: datetime
    expires: datetime
    authorization_code: str | None = None
    next_token: str | None = None
    invalidation_timestamp: datetime | None = None

    @classmethod
    def for_user(
        cls, user_id: str, lifetime: timedelta, now: datetime | None = None
    ) -> AuthorizationToken:
        """Token issued by a direct (non-OAuth) login."""
        now = now or _now()
        return cls(
            access_token=_random_token(),
            refresh_token=_random_token(),
            owner=user_id,
            granted=now,
            expires=now + lifetime,
        )

    @classmethod
    def from_code(
        cls, code: AuthorizationCode, lifetime: timedelta, now: datetime | None = None
    ) -> AuthorizationToken:
        if code.response is None:
            raise InvalidArgumentError("The user has not yet responded.")
        now = now or _now()
        return cls(
            access_token=_random_token(),
            refresh_token=_random_token(),
            owner=code.response.user_id,
            granted=now,
            expires=now + lifetime,
            authorization_code=code.code,
        )

    @classmethod
    def from_token(
        cls, previous: AuthorizationToken, lifetime: timedelta, now: datetime | None = None
    ) -> AuthorizationToken:
        """Successor of *previous*. It is not tied to a code itself."""
        now = now or _now()
        return cls(
            access_token=_random_token(),
            refresh_token=_random_token(),
            owner=previous.owner,
            granted=now,
            expires=now + lifetime,
        )

    def was_refreshed(self) -> bool:
        return self.next_token is not None

    def was_invalidated(self, now: datetime | None = None) -> bool:
        if self.invalidation_timestamp is None:
            return False
        return self.invalidation_timestamp <= (now or _now())

    def is_valid(self, now: datetime | None = None) -> bool:
        return not (self.was_refreshed() or self.was_invalidated(now))

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires < (now or _now())

    def with_next_token(self, next_access_token: str) -> AuthorizationToken:
        if self.next_token is not None:
            return self
        return replace(self, next_token=next_access_token)

    def invalidated(self, when: datetime) -> AuthorizationToken:
        if self.invalidation_timestamp is not None:
            return self
        return replace(self, invalidation_timestamp=when)

    def to_json(self, now: datetime | None = None) -> dict[str, Any]:
        """Body returned to the client that received this token."""
        remaining = (self.expires - (now or _now())).total_seconds()
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "user_id": self.owner,
            "expires_in": max(int(remaining), 0),
            "token_type": TOKEN_TYPE,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "owner": self.owner,
            "granted": _ts(self.granted),
            "expires": _ts(self.expires),
            "authorization_code": self.authorization_code,
            "next_token": self.next_token,
            "invalidation_timestamp": _ts(self.invalidation_timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthorizationToken:
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            owner=data["owner"],
            granted=datetime.fromisoformat(data["granted"]),
            expires=datetime.fromisoformat(data["expires"]),
            authorization_code=data.get("authorization_code"),
            next_token=data.get("next_token"),
            invalidation_timestamp=_parse_ts(data.get("invalidation_timestamp")),
        )


@dataclass(frozen=True)
class User:
    """Account known to the user registry.

    Password checking is delegated to whatever the registry plugs in.
    """

    user_id: str
    email: str
    password_check: Callable[[str], bool] = field(repr=False, compare=False)

    def verify_password(self, password: str) -> bool:
        return self.password_check(password)
