# Tests for scope parsing and schema validation.
# Created: 2026-10-19

import pytest

from ohmage_oauth.api.oauth2.models import Scope, ScopeType
from ohmage_oauth.api.oauth2.scopes import ScopeValidator, parse_scopes
from ohmage_oauth.api.oauth2.storage import InMemorySchemaRegistry
from ohmage_oauth.errors import InvalidArgumentError


@pytest.fixture
def validator():
    return ScopeValidator(
        streams=InMemorySchemaRegistry({"steps": {1}}),
        surveys=InMemorySchemaRegistry.from_entries(["mood", "sleep:2"]),
    )


class TestParseScopes:
    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing(self, value):
        with pytest.raises(InvalidArgumentError, match="The scope is missing."):
            parse_scopes(value)

    def test_space_delimited(self):
        scopes = parse_scopes("omh:ohmage:stream:steps  omh:ohmage:survey:mood")
        assert scopes == frozenset(
            {Scope(ScopeType.STREAM, "steps"), Scope(ScopeType.SURVEY, "mood")}
        )

    def test_duplicates_collapse(self):
        assert len(parse_scopes("omh:ohmage:stream:steps omh:ohmage:stream:steps")) == 1

    def test_one_bad_entry_fails_all(self):
        with pytest.raises(InvalidArgumentError):
            parse_scopes("omh:ohmage:stream:steps omh:ohmage:stream")


class TestScopeValidator:
    def test_known_schemas(self, validator):
        scopes = validator.validate("omh:ohmage:stream:steps omh:ohmage:survey:sleep")
        assert {s.schema_id for s in scopes} == {"steps", "sleep"}

    def test_unknown_stream(self, validator):
        with pytest.raises(InvalidArgumentError, match="The stream is unknown: heart"):
            validator.validate("omh:ohmage:stream:heart")

    def test_type_selects_registry(self, validator):
        # "steps" is a stream, not a survey.
        with pytest.raises(InvalidArgumentError, match="The survey is unknown: steps"):
            validator.validate("omh:ohmage:survey:steps")


class TestSchemaRegistry:
    def test_version_lookup(self):
        registry = InMemorySchemaRegistry.from_entries(["steps:1", "steps:3"])
        assert registry.exists("steps")
        assert registry.exists("steps", 3)
        assert not registry.exists("steps", 2)
        assert not registry.exists("heart")
