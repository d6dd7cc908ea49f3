# Router aggregation.
# Created: 2026-10-19
#
# mount_routers(app, prefix) registers every domain router under the
# configured API prefix (empty by default, so paths are /oauth/... and
# /auth_token).

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("ohmage_oauth.api.routes.oauth2", "router", "OAuth2"),
    ("ohmage_oauth.api.routes.auth_token", "router", "Auth"),
]


def mount_routers(app: FastAPI, prefix: str = "") -> None:
    """Mount all domain routers on *app* under *prefix*."""
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag in _ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router, prefix=prefix)
        logger.debug("Mounted router: %s (%s)", module_path, tag)
