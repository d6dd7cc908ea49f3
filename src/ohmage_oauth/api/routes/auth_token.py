# Authentication token router for password login and logout.
# Created: 2026-10-19

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Form, Header
from fastapi.responses import Response

from ohmage_oauth.api.deps import auth_rate_limit, get_server, parse_auth_header
from ohmage_oauth.api.oauth2.server import AuthorizationServer
from ohmage_oauth.api.routes.schemas import TokenResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


@router.post(
    "/auth_token",
    response_model=TokenResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def login(
    email: str = Form(...),
    password: str = Form(...),
    server: AuthorizationServer = Depends(get_server),
):
    """Issue a token from a user's email and password."""
    token = server.login(email=email, password=password)
    return TokenResponse(**token.to_json(server.now()))


@router.delete("/auth_token")
async def invalidate(
    authorization: str | None = Header(default=None),
    server: AuthorizationServer = Depends(get_server),
):
    """Invalidate the token in the Authorization header. Unknown tokens are ignored."""
    server.invalidate(parse_auth_header(authorization))
    return Response(status_code=200)
