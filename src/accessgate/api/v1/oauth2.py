# OAuth2 router — authorize, consent, token, introspect, revoke, userinfo.
# Created: 2026-10-09

from __future__ import annotations

import base64
import binascii
import html
import logging
from urllib.parse import unquote, urlencode

from fastapi import APIRouter, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from accessgate.api.deps import bearer_token, session_user
from accessgate.api.v1.schemas.oauth2 import TokenParam, TokenRequest
from accessgate.errors import InvalidClient, InvalidRequest, OAuthError, UnsupportedGrantType

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])

_GRANT_TYPES = frozenset({"authorization_code", "refresh_token", "client_credentials"})
_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><title>Authorize {client_name}</title>
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
.scopes {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
.scope {{ display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }}
</style></head><body>
<h2>Authorize {client_name}</h2>
<p>{description}</p>
<p>Signed in as <strong>{user_name}</strong>.</p>
<div class="scopes"><strong>Requested permissions:</strong><br>{scope_badges}</div>
<form method="POST" action="{action}">
<input type="hidden" name="client_id" value="{client_id}">
<input type="hidden" name="redirect_uri" value="{redirect_uri}">
<input type="hidden" name="scope" value="{scope}">
<input type="hidden" name="code_challenge" value="{code_challenge}">
<input type="hidden" name="code_challenge_method" value="{code_challenge_method}">
<input type="hidden" name="nonce" value="{nonce}">
<input type="hidden" name="state" value="{state}">
<button type="submit" name="action" value="allow" class="btn allow">Allow</button>
<button type="submit" name="action" value="deny" class="btn deny">Deny</button>
</form></body></html>"""


def _server():
    from accessgate.oauth2.server import get_oauth_server

    return get_oauth_server()


def _error(exc: OAuthError) -> JSONResponse:
    headers = dict(_NO_STORE)
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = f'Bearer error="{exc.error}"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _redirect(redirect_uri: str, params: dict[str, str], state: str) -> RedirectResponse:
    if state:
        params["state"] = state
    sep = "&" if "?" in redirect_uri else "?"
    return RedirectResponse(f"{redirect_uri}{sep}{urlencode(params)}", status_code=302)


async def _read_params(request: Request) -> dict[str, str]:
    """Form-encoded (RFC 6749) or JSON body as a flat string dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidRequest("Malformed JSON body") from None
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be an object")
        return {k: str(v) for k, v in body.items() if v is not None}
    form = await request.form()
    return {k: str(v) for k, v in form.items()}


def _client_credentials(request: Request, params: dict[str, str]) -> tuple[str | None, str | None]:
    """client_secret_basic first, then client_secret_post."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Basic "):
        try:
            decoded = base64.b64decode(auth_header[6:].strip()).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise InvalidClient("Malformed Basic authorization header") from None
        client_id, sep, client_secret = decoded.partition(":")
        if not sep:
            raise InvalidClient("Malformed Basic authorization header")
        return unquote(client_id), unquote(client_secret)
    return params.get("client_id"), params.get("client_secret")


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    response_type: str = Query(""),
    client_id: str = Query(""),
    redirect_uri: str = Query(""),
    scope: str | None = Query(None),
    state: str = Query(""),
    code_challenge: str | None = Query(None),
    code_challenge_method: str | None = Query(None),
    nonce: str | None = Query(None),
):
    """Start the authorization-code flow."""
    server = _server()
    try:
        auth_request = server.validate_authorization_request(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=state,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            nonce=nonce,
        )
    except OAuthError as exc:
        logger.info("Rejected authorization request from %s: %s", client_id, exc.error)
        return _error(exc)

    user = session_user(request)
    if user is None:
        login_url = server.settings.login_url
        return RedirectResponse(
            f"{login_url}?{urlencode({'returnUrl': str(request.url)})}", status_code=302
        )

    if server.needs_consent(auth_request.client, user.id, auth_request.scopes):
        client = auth_request.client
        esc = html.escape
        page = _CONSENT_HTML.format(
            client_name=esc(client.name),
            description=esc(client.description or "This application wants to access your account."),
            user_name=esc(user.name or user.id),
            scope_badges=" ".join(
                f'<span class="scope">{esc(s)}</span>' for s in auth_request.scopes
            ),
            action=esc(str(request.url_for("authorize_consent").path)),
            client_id=esc(client.client_id),
            redirect_uri=esc(auth_request.redirect_uri),
            scope=esc(auth_request.scope),
            code_challenge=esc(auth_request.code_challenge or ""),
            code_challenge_method=esc(auth_request.code_challenge_method or ""),
            nonce=esc(auth_request.nonce or ""),
            state=esc(state),
        )
        return HTMLResponse(page)

    code = server.issue_code(auth_request, user)
    return _redirect(auth_request.redirect_uri, {"code": code}, state)


@router.post("/oauth/authorize/consent", name="authorize_consent")
async def authorize_consent(request: Request):
    """Process the consent form."""
    server = _server()
    form = await request.form()

    def field(name: str) -> str:
        return str(form.get(name) or "")

    state = field("state")

    try:
        auth_request = server.validate_authorization_request(
            response_type="code",
            client_id=field("client_id"),
            redirect_uri=field("redirect_uri"),
            scope=field("scope") or None,
            state=state,
            code_challenge=field("code_challenge") or None,
            code_challenge_method=field("code_challenge_method") or None,
            nonce=field("nonce") or None,
        )
    except OAuthError as exc:
        return _error(exc)

    user = session_user(request)
    if user is None:
        return JSONResponse(
            status_code=401,
            content={"error": "login_required", "error_description": "Sign in first"},
        )

    if field("action") != "allow":
        logger.info("User %s denied consent to %s", user.id, auth_request.client.client_id)
        return _redirect(auth_request.redirect_uri, {"error": "access_denied"}, state)

    server.record_consent(auth_request.client.client_id, user.id, auth_request.scopes)
    code = server.issue_code(auth_request, user)
    return _redirect(auth_request.redirect_uri, {"code": code}, state)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


@router.post("/oauth/token")
async def token_endpoint(request: Request):
    """Exchange a code, refresh token or client credentials for tokens."""
    server = _server()
    try:
        params = await _read_params(request)
        grant_type = params.get("grant_type", "")
        if not grant_type:
            raise InvalidRequest("grant_type is required")
        if grant_type not in _GRANT_TYPES:
            raise UnsupportedGrantType(f"Unsupported grant_type: {grant_type}")
        client_id, client_secret = _client_credentials(request, params)
        body = TokenRequest.model_validate(
            {**params, "client_id": client_id, "client_secret": client_secret}
        )

        if body.grant_type == "authorization_code":
            result = server.exchange_code(
                code=body.code or "",
                client_id=body.client_id or "",
                client_secret=body.client_secret,
                redirect_uri=body.redirect_uri,
                code_verifier=body.code_verifier,
            )
        elif body.grant_type == "refresh_token":
            result = server.refresh(
                body.refresh_token or "",
                client_id=body.client_id,
                client_secret=body.client_secret,
            )
        else:
            result = server.client_credentials(body.client_id, body.client_secret, body.scope)
    except OAuthError as exc:
        logger.info("Token request failed: %s", exc.error)
        return _error(exc)

    return JSONResponse(content=result, headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Introspection / revocation / userinfo
# ---------------------------------------------------------------------------


def _is_admin_session(request: Request) -> bool:
    from accessgate.auth.users import get_user_manager

    user = session_user(request)
    return user is not None and get_user_manager().resolver.has_admin_access(user.groups)


@router.post("/oauth/introspect")
async def introspect(request: Request):
    """RFC 7662-style introspection. Callers authenticate as a client or admin."""
    server = _server()
    try:
        body = TokenParam.model_validate(await _read_params(request))
        client_id, client_secret = _client_credentials(request, body.model_dump())
        if client_id:
            server.authenticate_client(client_id, client_secret)
        elif not _is_admin_session(request):
            raise InvalidClient("Client authentication required")
    except OAuthError as exc:
        return _error(exc)

    return JSONResponse(content=server.introspect(body.token), headers=_NO_STORE)


@router.post("/oauth/revoke")
async def revoke(request: Request):
    """RFC 7009 revocation. Unknown tokens still yield 200."""
    server = _server()
    try:
        body = TokenParam.model_validate(await _read_params(request))
        client_id, client_secret = _client_credentials(request, body.model_dump())
        if client_id and client_secret:
            server.authenticate_client(client_id, client_secret)
    except OAuthError as exc:
        return _error(exc)

    server.revoke(body.token)
    return JSONResponse(content={}, headers=_NO_STORE)


@router.get("/oauth/userinfo")
async def userinfo(request: Request):
    try:
        return _server().userinfo(bearer_token(request))
    except OAuthError as exc:
        return _error(exc)
