# Request and response bodies.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """Token issued by a code exchange, a refresh or a login."""

    access_token: str
    refresh_token: str
    user_id: str
    expires_in: int
    token_type: str = "ohmage"


class ClientCreateRequest(BaseModel):
    """New OAuth client registration."""

    name: str = Field(..., min_length=1)
    description: str = ""
    redirect_uri: str = Field(..., min_length=1)


class ClientResponse(BaseModel):
    """Public view of an OAuth client."""

    client_id: str
    owner: str
    name: str
    description: str
    redirect_uri: str


class ScopeResponse(BaseModel):
    type: str
    schema_id: str
    schema_version: int | None = None


class CodeResponseBody(BaseModel):
    user_id: str
    granted: bool
    creation_timestamp: str | None = None
    invalidation_timestamp: str | None = None


class CodeResponse(BaseModel):
    """An authorization code as shown to its responder."""

    code: str
    oauth_client_id: str
    scopes: list[ScopeResponse]
    redirect_uri: str
    state: str | None = None
    creation_timestamp: str
    expiration_timestamp: str
    used_timestamp: str | None = None
    response: CodeResponseBody | None = None
