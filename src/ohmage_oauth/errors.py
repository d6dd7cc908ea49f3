# Error taxonomy shared by the flow service and the HTTP layer.
# Created: 2026-10-19
#
# Every failure the authorization server raises on purpose is an OhmageError.
# The API layer turns these into JSON responses with the class's status code;
# anything else is a bug and surfaces as a bare 500.

from __future__ import annotations

from typing import Any


class OhmageError(Exception):
    """Base class for all expected, user-facing failures."""

    status_code: int = 400
    error_code: str = "invalid_request"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "detail": self.message}


class AuthenticationError(OhmageError):
    """Unknown or wrong credentials (client, user or token).

    Messages never reveal which half of a credential pair was wrong.
    """

    status_code = 401
    error_code = "authentication_failed"


class InsufficientPermissionsError(OhmageError):
    """The caller is known but is not the owner of the entity."""

    status_code = 403
    error_code = "insufficient_permissions"


class InvalidArgumentError(OhmageError):
    """A request value is malformed or conflicts with stored state."""

    status_code = 400
    error_code = "invalid_argument"


class UnknownEntityError(OhmageError):
    """A referenced entity does not exist."""

    status_code = 404
    error_code = "unknown_entity"


class StoreError(OhmageError):
    """A persistence operation failed. The cause is kept for logging only."""

    status_code = 500
    error_code = "server_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error_code, "detail": "An internal error occurred."}
