# Shared fixtures: a controllable clock, registries and a wired server.
# Created: 2026-10-19

from datetime import UTC, datetime, timedelta

import pytest
from passlib.context import CryptContext

from ohmage_oauth.api.oauth2.server import AuthorizationServer
from ohmage_oauth.api.oauth2.storage import (
    InMemorySchemaRegistry,
    InMemoryUserRegistry,
    OAuthStorage,
)
from ohmage_oauth.security.audit import AuditLogger

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)

ALICE = ("u-alice", "alice@example.org", "alice-pw")
BOB = ("u-bob", "bob@example.org", "bob-pw")
CAROL = ("u-carol", "carol@example.org", "carol-pw")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def users():
    # Lowest bcrypt cost.
    registry = InMemoryUserRegistry(CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))
    for user_id, email, password in (ALICE, BOB, CAROL):
        registry.add_user(user_id, email, password)
    return registry


@pytest.fixture
def streams():
    return InMemorySchemaRegistry({"steps": {1, 2}})


@pytest.fixture
def surveys():
    return InMemorySchemaRegistry({"mood": {1}})


@pytest.fixture
def storage():
    return OAuthStorage()


@pytest.fixture
def audit_path(tmp_path):
    return tmp_path / "audit.jsonl"


@pytest.fixture
def server(storage, users, streams, surveys, clock, audit_path):
    return AuthorizationServer(
        storage,
        users=users,
        streams=streams,
        surveys=surveys,
        audit=AuditLogger(audit_path),
        clock=clock,
    )


@pytest.fixture
def oauth_client(server):
    """Client C1 owned by Carol with default redirect https://app.example/cb."""
    return server.register_client(
        owner=CAROL[0],
        name="Step Tracker",
        description="Reads your steps",
        redirect_uri="https://app.example/cb",
    )
