"""API server for ``ohmage-oauth serve``.

Builds the FastAPI application with the OAuth2 and auth-token routers, CORS
and the error handlers that turn ``OhmageError`` into JSON responses.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ohmage_oauth.config import Settings, get_settings
from ohmage_oauth.errors import AuthenticationError, OhmageError

logger = logging.getLogger(__name__)


async def _ohmage_error_handler(request: Request, exc: OhmageError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc
        )
    else:
        logger.info(
            "%s %s rejected (%d): %s",
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
        )
    headers = None
    if isinstance(exc, AuthenticationError):
        headers = {"WWW-Authenticate": get_settings().auth_header_scheme}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Missing or malformed parameters are argument errors, same as the flow's own.
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    detail = f"{location}: {first.get('msg', 'invalid value')}" if location else "Invalid request."
    logger.info("%s %s rejected (400): %s", request.method, request.url.path, detail)
    return JSONResponse(status_code=400, content={"error": "invalid_argument", "detail": detail})


def create_api_app(settings: Settings | None = None) -> FastAPI:
    """Build the FastAPI application."""
    from fastapi.middleware.cors import CORSMiddleware

    from ohmage_oauth import __version__
    from ohmage_oauth.api.routes import mount_routers

    settings = settings or get_settings()
    prefix = settings.api_prefix

    app = FastAPI(
        title="ohmage OAuth",
        description="Authorization server for ohmage data streams and surveys.",
        version=__version__,
        docs_url=f"{prefix}/docs",
        redoc_url=f"{prefix}/redoc",
        openapi_url=f"{prefix}/openapi.json",
    )

    # --- CORS -----------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
        expose_headers=["shared_secret"],
    )

    # --- Errors ---------------------------------------------------------
    app.add_exception_handler(OhmageError, _ohmage_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    # --- Routers --------------------------------------------------------
    mount_routers(app, prefix)

    return app


def run_api_server(
    host: str = "127.0.0.1",
    port: int = 8080,
    dev: bool = False,
) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    logger.info("ohmage OAuth server listening on http://%s:%d", host, port)

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "ohmage_oauth.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        app = create_api_app()
        uvicorn.run(app, host=host, port=port)
