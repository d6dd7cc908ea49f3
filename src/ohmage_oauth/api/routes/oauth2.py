# OAuth2 router: authorization, token exchange, clients and codes.
# Created: 2026-10-19

from __future__ import annotations

import html
import logging

from fastapi import APIRouter, Depends, Form, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from ohmage_oauth.api.deps import (
    auth_rate_limit,
    get_server,
    optional_auth_token,
    require_auth_token,
)
from ohmage_oauth.api.oauth2.models import AuthorizationToken
from ohmage_oauth.api.oauth2.server import AuthorizationServer
from ohmage_oauth.api.routes.schemas import (
    ClientCreateRequest,
    ClientResponse,
    CodeResponse,
    TokenResponse,
)
from ohmage_oauth.errors import AuthenticationError, InvalidArgumentError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><title>ohmage Authorization</title>
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
input[type=email], input[type=password] {{ width: 100%; padding: 8px; margin: 4px 0 12px; }}
.scopes {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
.scope {{ display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }}
</style></head><body>
<h2>Authorize {client_name}</h2>
<p>{client_description}</p>
<div class="scopes"><strong>Requested data:</strong><br>{scope_badges}</div>
<form method="POST" action="{action}">
<input type="hidden" name="code" value="{code}">
<label>Email <input type="email" name="email" required></label>
<label>Password <input type="password" name="password" required></label>
<button type="submit" name="granted" value="true" class="btn allow">Allow</button>
<button type="submit" name="granted" value="false" class="btn deny">Deny</button>
</form></body></html>"""


def _token_body(server: AuthorizationServer, token: AuthorizationToken) -> TokenResponse:
    return TokenResponse(**token.to_json(server.now()))


@router.get("/oauth/authorize", dependencies=[Depends(auth_rate_limit)])
async def authorize(
    request: Request,
    client_id: str = Query(...),
    scope: str = Query(...),
    redirect_uri: str | None = Query(None),
    state: str | None = Query(None),
    response_type: str = Query("code"),
    server: AuthorizationServer = Depends(get_server),
):
    """Create a code and send the user to the authorization page."""
    if response_type != "code":
        raise InvalidArgumentError(f"Unsupported response_type: {response_type}")

    code = server.authorize(
        client_id=client_id,
        scope=scope,
        redirect_uri=redirect_uri,
        state=state,
    )
    page = request.url_for("authorization_page").include_query_params(code=code.code)
    return RedirectResponse(str(page), status_code=302)


@router.get("/oauth/Authorize.html", name="authorization_page")
async def authorization_page(
    request: Request,
    code: str = Query(...),
    server: AuthorizationServer = Depends(get_server),
):
    """Consent form for a pending code."""
    auth_code = server.storage.get_code(code)
    if auth_code is None:
        raise InvalidArgumentError("The code is unknown.")
    if auth_code.is_expired(server.now()):
        raise InvalidArgumentError("The code has expired.")
    client = server.get_client(auth_code.oauth_client_id)

    scope_badges = " ".join(
        f'<span class="scope">{html.escape(str(s))}</span>'
        for s in sorted(auth_code.scopes, key=str)
    )
    page = _CONSENT_HTML.format(
        client_name=html.escape(client.name),
        client_description=html.escape(client.description),
        scope_badges=scope_badges,
        action=html.escape(str(request.url_for("authorization_response"))),
        code=html.escape(auth_code.code),
    )
    return HTMLResponse(page)


@router.post(
    "/oauth/authorization",
    name="authorization_response",
    dependencies=[Depends(auth_rate_limit)],
)
async def authorization(
    email: str = Form(...),
    password: str = Form(...),
    code: str = Form(...),
    granted: bool = Form(...),
    server: AuthorizationServer = Depends(get_server),
):
    """Record the user's verdict and send them back to the client."""
    target = server.respond(email=email, password=password, code_string=code, granted=granted)
    return RedirectResponse(target, status_code=302)


@router.post(
    "/oauth/token",
    response_model=TokenResponse,
    dependencies=[Depends(auth_rate_limit)],
)
async def token(
    grant_type: str = Form(...),
    client_id: str | None = Form(None),
    client_secret: str | None = Form(None),
    code: str | None = Form(None),
    redirect_uri: str | None = Form(None),
    refresh_token: str | None = Form(None),
    server: AuthorizationServer = Depends(get_server),
):
    """Exchange an authorization code or a refresh token for a token."""
    if not client_id:
        raise AuthenticationError("The OAuth client ID is missing.")
    if not client_secret:
        raise AuthenticationError("The OAuth client secret is missing.")

    if grant_type == "authorization_code":
        if not code:
            raise InvalidArgumentError("The code is missing.")
        issued = server.exchange(
            client_id=client_id,
            client_secret=client_secret,
            code_string=code,
            redirect_uri=redirect_uri or None,
        )
    elif grant_type == "refresh_token":
        if not refresh_token:
            raise InvalidArgumentError("The refresh token is missing.")
        issued = server.refresh(
            client_id=client_id,
            client_secret=client_secret,
            refresh_token=refresh_token,
        )
    else:
        raise InvalidArgumentError(f"Unsupported grant_type: {grant_type}")

    return _token_body(server, issued)


@router.post("/oauth/clients", response_model=ClientResponse)
async def create_client(
    body: ClientCreateRequest,
    auth_token: AuthorizationToken = Depends(require_auth_token),
    server: AuthorizationServer = Depends(get_server),
):
    """Register a client owned by the caller. The secret comes back as a header."""
    client = server.register_client(
        owner=auth_token.owner,
        name=body.name,
        description=body.description,
        redirect_uri=body.redirect_uri,
    )
    return JSONResponse(
        content=client.to_public_dict(),
        headers={"shared_secret": client.secret},
    )


@router.get("/oauth/clients", response_model=list[str])
async def list_clients(
    auth_token: AuthorizationToken = Depends(require_auth_token),
    server: AuthorizationServer = Depends(get_server),
):
    """IDs of the clients the caller registered."""
    return server.list_client_ids(auth_token.owner)


@router.get("/oauth/clients/{client_id}", response_model=ClientResponse)
async def get_client(
    client_id: str,
    server: AuthorizationServer = Depends(get_server),
):
    return ClientResponse(**server.get_client(client_id).to_public_dict())


@router.get("/oauth/codes", response_model=list[str])
async def list_codes(
    auth_token: AuthorizationToken = Depends(require_auth_token),
    server: AuthorizationServer = Depends(get_server),
):
    """Codes the caller has responded to."""
    return server.list_codes(auth_token.owner)


@router.get("/oauth/codes/{code}", response_model=CodeResponse)
async def get_code(
    code: str,
    auth_token: AuthorizationToken | None = Depends(optional_auth_token),
    server: AuthorizationServer = Depends(get_server),
):
    requester = auth_token.owner if auth_token is not None else None
    return CodeResponse(**server.get_code(code, requester).to_dict())


@router.delete("/oauth/codes/{code}")
async def revoke_code(
    code: str,
    auth_token: AuthorizationToken = Depends(require_auth_token),
    server: AuthorizationServer = Depends(get_server),
):
    """Withdraw the caller's response to a code."""
    server.revoke_code(code, auth_token.owner)
    return Response(status_code=200)
