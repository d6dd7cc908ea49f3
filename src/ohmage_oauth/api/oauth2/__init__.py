# OAuth2 authorization code flow
# Created: 2026-10-19
#
# Entities, storage, validators and the AuthorizationServer that drives the
# authorize / respond / exchange / refresh lifecycle.

from ohmage_oauth.api.oauth2.models import (
    AuthorizationCode,
    AuthorizationCodeResponse,
    AuthorizationToken,
    OAuthClient,
    Scope,
    ScopeType,
    User,
)
from ohmage_oauth.api.oauth2.server import (
    AuthorizationServer,
    get_oauth_server,
    reset_oauth_server,
)
from ohmage_oauth.api.oauth2.storage import (
    InMemorySchemaRegistry,
    InMemoryUserRegistry,
    OAuthStorage,
)

__all__ = [
    "AuthorizationCode",
    "AuthorizationCodeResponse",
    "AuthorizationServer",
    "AuthorizationToken",
    "InMemorySchemaRegistry",
    "InMemoryUserRegistry",
    "OAuthClient",
    "OAuthStorage",
    "Scope",
    "ScopeType",
    "User",
    "get_oauth_server",
    "reset_oauth_server",
]
