# Scope parsing and validation.
# Created: 2026-10-19

from __future__ import annotations

import logging

from ohmage_oauth.api.oauth2.models import Scope, ScopeType
from ohmage_oauth.api.oauth2.protocol import SchemaRegistry
from ohmage_oauth.errors import InvalidArgumentError

logger = logging.getLogger(__name__)


def parse_scopes(scope_string: str | None) -> frozenset[Scope]:
    """Split a space-delimited scope string and parse every entry."""
    if scope_string is None or not scope_string.strip():
        raise InvalidArgumentError("The scope is missing.")
    return frozenset(Scope.parse(token) for token in scope_string.split())


class ScopeValidator:
    """Parses scope strings and checks each named schema exists."""

    def __init__(self, streams: SchemaRegistry, surveys: SchemaRegistry):
        self._registries: dict[ScopeType, SchemaRegistry] = {
            ScopeType.STREAM: streams,
            ScopeType.SURVEY: surveys,
        }

    def validate(self, scope_string: str | None) -> frozenset[Scope]:
        scopes = parse_scopes(scope_string)
        for scope in scopes:
            registry = self._registries[scope.type]
            if not registry.exists(scope.schema_id, scope.schema_version):
                version = "" if scope.schema_version is None else f" : {scope.schema_version}"
                raise InvalidArgumentError(
                    f"The {scope.type.value} is unknown: {scope.schema_id}{version}"
                )
        logger.debug("Validated %d scope(s)", len(scopes))
        return scopes
