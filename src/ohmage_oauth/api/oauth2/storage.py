# OAuth2 client, code and token storage.
# Created: 2026-10-19
#
# One lock guards all three maps. The one-time mutations (a code's response,
# a token's next_token, a token's invalidation, the first token for a code)
# are compare-and-set under that lock: the first writer's value is kept and
# every caller gets back what is stored.
#
# With a persist_path, the whole state is written to a JSON file before a
# change is applied in memory, so a failed write leaves both unchanged.

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from passlib.context import CryptContext

from ohmage_oauth.api.oauth2.models import (
    AuthorizationCode,
    AuthorizationCodeResponse,
    AuthorizationToken,
    OAuthClient,
    User,
)
from ohmage_oauth.errors import InvalidArgumentError, StoreError, UnknownEntityError

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class OAuthStorage:
    """Thread-safe store for clients, codes and tokens.

    Implements ClientRegistry, CodeStore and TokenStore.
    """

    def __init__(self, persist_path: Path | None = None):
        self._lock = threading.RLock()
        self._clients: dict[str, OAuthClient] = {}
        self._codes: dict[str, AuthorizationCode] = {}
        self._tokens: dict[str, AuthorizationToken] = {}  # keyed by access_token
        self._refresh_index: dict[str, str] = {}  # refresh_token → access_token
        self._code_index: dict[str, str] = {}  # code → first access_token
        self._previous_index: dict[str, str] = {}  # next_token → access_token
        self._persist_path = persist_path
        self._load()

    # -- persistence ---------------------------------------------------

    def _load(self) -> None:
        """Load state from disk on startup."""
        path = self._persist_path
        if path is None or not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            for entry in data.get("clients", []):
                client = OAuthClient.from_dict(entry)
                self._clients[client.client_id] = client
            for entry in data.get("codes", []):
                code = AuthorizationCode.from_dict(entry)
                self._codes[code.code] = code
            for entry in data.get("tokens", []):
                self._index_token(AuthorizationToken.from_dict(entry))
            logger.debug(
                "Loaded %d clients, %d codes, %d tokens from %s",
                len(self._clients),
                len(self._codes),
                len(self._tokens),
                path,
            )
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
            logger.warning("Failed to load OAuth state from %s: %s", path, exc)

    def _save(
        self,
        *,
        client: OAuthClient | None = None,
        code: AuthorizationCode | None = None,
        token: AuthorizationToken | None = None,
    ) -> None:
        """Persist the current state plus one pending record to disk.

        Callers apply the record in memory only after this returns. A no-op
        for memory-only storage.
        """
        path = self._persist_path
        if path is None:
            return
        clients = dict(self._clients)
        codes = dict(self._codes)
        tokens = dict(self._tokens)
        if client is not None:
            clients[client.client_id] = client
        if code is not None:
            codes[code.code] = code
        if token is not None:
            tokens[token.access_token] = token
        data: dict[str, list[dict[str, Any]]] = {
            "clients": [c.to_dict() for c in clients.values()],
            "codes": [c.to_dict() for c in codes.values()],
            "tokens": [t.to_dict() for t in tokens.values()],
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2))
            tmp.replace(path)
        except OSError as exc:
            logger.error("Failed to persist OAuth state to %s: %s", path, exc)
            raise StoreError(f"Could not write {path}") from exc
        try:
            path.chmod(0o600)
        except OSError:
            pass

    def _index_token(self, token: AuthorizationToken) -> None:
        self._tokens[token.access_token] = token
        self._refresh_index[token.refresh_token] = token.access_token
        if token.authorization_code is not None:
            self._code_index.setdefault(token.authorization_code, token.access_token)
        if token.next_token is not None:
            self._previous_index[token.next_token] = token.access_token

    # -- clients -------------------------------------------------------

    def get_client(self, client_id: str) -> OAuthClient | None:
        with self._lock:
            return self._clients.get(client_id)

    def add_client(self, client: OAuthClient) -> None:
        with self._lock:
            if client.client_id in self._clients:
                raise InvalidArgumentError("An OAuth client with this ID already exists.")
            self._save(client=client)
            self._clients[client.client_id] = client

    def get_client_ids(self, owner: str) -> list[str]:
        with self._lock:
            return sorted(c.client_id for c in self._clients.values() if c.owner == owner)

    # -- codes ---------------------------------------------------------

    def store_code(self, code: AuthorizationCode) -> None:
        with self._lock:
            if code.code in self._codes:
                raise InvalidArgumentError("The code already exists.")
            self._save(code=code)
            self._codes[code.code] = code

    def get_code(self, code: str) -> AuthorizationCode | None:
        with self._lock:
            return self._codes.get(code)

    def get_codes_for_user(self, user_id: str) -> list[AuthorizationCode]:
        with self._lock:
            return [
                c
                for c in self._codes.values()
                if c.response is not None and c.response.user_id == user_id
            ]

    def set_code_response(
        self, code: str, response: AuthorizationCodeResponse, used: datetime
    ) -> AuthorizationCode:
        with self._lock:
            current = self._codes.get(code)
            if current is None:
                raise UnknownEntityError("The code is unknown.")
            if current.response is not None:
                return current
            updated = current.with_response(response, used)
            self._save(code=updated)
            self._codes[code] = updated
            return updated

    def invalidate_code_response(self, code: str, when: datetime) -> AuthorizationCode:
        with self._lock:
            current = self._codes.get(code)
            if current is None:
                raise UnknownEntityError("The code is unknown.")
            if current.response is None:
                raise InvalidArgumentError("The code has not been responded to.")
            if current.response.invalidation_timestamp is not None:
                return current
            updated = current.with_response(
                current.response.invalidated(when), current.used_timestamp or when
            )
            self._save(code=updated)
            self._codes[code] = updated
            return updated

    # -- tokens --------------------------------------------------------

    def store_token(self, token: AuthorizationToken) -> None:
        with self._lock:
            if token.access_token in self._tokens:
                raise InvalidArgumentError("The token already exists.")
            self._save(token=token)
            self._index_token(token)

    def add_token_for_code(self, token: AuthorizationToken) -> AuthorizationToken:
        if token.authorization_code is None:
            raise ValueError("add_token_for_code needs a token issued from a code")
        with self._lock:
            existing = self._code_index.get(token.authorization_code)
            if existing is not None:
                return self._tokens[existing]
            self._save(token=token)
            self._index_token(token)
            return token

    def get_token(self, access_token: str) -> AuthorizationToken | None:
        with self._lock:
            return self._tokens.get(access_token)

    def get_token_by_refresh(self, refresh_token: str) -> AuthorizationToken | None:
        with self._lock:
            access_token = self._refresh_index.get(refresh_token)
            if access_token:
                return self._tokens.get(access_token)
            return None

    def get_token_by_code(self, code: str) -> AuthorizationToken | None:
        with self._lock:
            access_token = self._code_index.get(code)
            if access_token:
                return self._tokens.get(access_token)
            return None

    def get_token_by_next_token(self, access_token: str) -> AuthorizationToken | None:
        with self._lock:
            previous = self._previous_index.get(access_token)
            if previous:
                return self._tokens.get(previous)
            return None

    def set_next_token(self, access_token: str, next_token: str) -> AuthorizationToken:
        with self._lock:
            current = self._tokens.get(access_token)
            if current is None:
                raise UnknownEntityError("The token is unknown.")
            if current.next_token is not None:
                return current
            updated = current.with_next_token(next_token)
            self._save(token=updated)
            self._index_token(updated)
            return updated

    def invalidate_token(self, access_token: str, when: datetime) -> AuthorizationToken | None:
        with self._lock:
            current = self._tokens.get(access_token)
            if current is None:
                return None
            if current.invalidation_timestamp is not None:
                return current
            updated = current.invalidated(when)
            self._save(token=updated)
            self._index_token(updated)
            return updated


class InMemoryUserRegistry:
    """User registry backed by a dict of bcrypt password hashes.

    A stand-in for the platform's real user store.
    """

    def __init__(self, context: CryptContext | None = None) -> None:
        self._context = context or pwd_context
        self._users: dict[str, tuple[str, str]] = {}  # email → (user_id, hash)

    def add_user(self, user_id: str, email: str, password: str) -> None:
        self.add_user_hash(user_id, email, self._context.hash(password))

    def add_user_hash(self, user_id: str, email: str, password_hash: str) -> None:
        self._users[email] = (user_id, password_hash)

    def _verify(self, password: str, password_hash: str) -> bool:
        try:
            return bool(self._context.verify(password, password_hash))
        except ValueError as exc:
            logger.error("Unreadable password hash: %s", exc)
            return False

    def get_user_by_email(self, email: str) -> User | None:
        entry = self._users.get(email)
        if entry is None:
            return None
        user_id, password_hash = entry
        return User(
            user_id=user_id,
            email=email,
            password_check=lambda pw: self._verify(pw, password_hash),
        )

    @classmethod
    def from_file(cls, path: Path) -> InMemoryUserRegistry:
        """Load ``[{"user_id", "email", "password_hash"}, ...]`` from JSON.

        ``password_hash`` is a bcrypt hash as produced by ``pwd_context.hash``.
        """
        registry = cls()
        if not path.exists():
            logger.warning("User file %s does not exist; no users are known", path)
            return registry
        for entry in json.loads(path.read_text()):
            registry.add_user_hash(entry["user_id"], entry["email"], entry["password_hash"])
        return registry


class InMemorySchemaRegistry:
    """Set of known schema ids, each with its known versions."""

    def __init__(self, schemas: dict[str, set[int]] | None = None):
        self._schemas: dict[str, set[int]] = {k: set(v) for k, v in (schemas or {}).items()}

    def add(self, schema_id: str, version: int | None = None) -> None:
        versions = self._schemas.setdefault(schema_id, set())
        if version is not None:
            versions.add(version)

    def exists(self, schema_id: str, schema_version: int | None = None) -> bool:
        versions = self._schemas.get(schema_id)
        if versions is None:
            return False
        return schema_version is None or schema_version in versions

    @classmethod
    def from_entries(cls, entries: list[str]) -> InMemorySchemaRegistry:
        """Build from ``"id"`` or ``"id:version"`` strings."""
        registry = cls()
        for entry in entries:
            schema_id, _, version = entry.partition(":")
            registry.add(schema_id, int(version) if version else None)
        return registry
