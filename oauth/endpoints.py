"""OAuth 2.1 endpoints for MCP server authentication.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize, /oauth/authorize/submit)
- Token endpoint (/oauth/token)
- Revocation (/oauth/revoke)
"""

import logging
import secrets
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from oauth.context import OAuthContext, get_context
from oauth.models import Session, SESSION_TTL_MS, generate_id, now_ms
from oauth.templates import render_authorize_page
from oauth.tokens import SCOPES, TokenError
from oauth.validator import CredentialValidationError

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])


def oauth_error(error: str, description: str = None, status_code: int = 400) -> JSONResponse:
    return JSONResponse(TokenError(error, description).to_dict(), status_code=status_code)


def append_query(url: str, params: dict) -> str:
    """Add query parameters to a URL, keeping any it already carries."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


# ============== OAuth 2.1 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(ctx: OAuthContext = Depends(get_context)):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return {
        "resource": ctx.server_url,
        "authorization_servers": [ctx.server_url],
        "scopes_supported": SCOPES,
        "bearer_methods_supported": ["header"],
        "resource_documentation": f"{ctx.server_url}/",
    }


@router.get("/.well-known/oauth-authorization-server")
@router.get("/.well-known/openid-configuration")
async def oauth_authorization_server(ctx: OAuthContext = Depends(get_context)):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    server_url = ctx.server_url
    return {
        "issuer": server_url,
        "authorization_endpoint": f"{server_url}/oauth/authorize",
        "token_endpoint": f"{server_url}/oauth/token",
        "registration_endpoint": f"{server_url}/oauth/register",
        "revocation_endpoint": f"{server_url}/oauth/revoke",
        "scopes_supported": SCOPES,
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post", "none"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591).

    Any client is accepted; nothing about it is stored.
    """
    try:
        data = await request.json()
    except ValueError:
        return oauth_error("invalid_request", "Invalid JSON")
    if not isinstance(data, dict):
        return oauth_error("invalid_request", "Invalid JSON")

    return JSONResponse({
        "client_id": generate_id(),
        "client_secret": secrets.token_urlsafe(32),
        "client_name": data.get("client_name") or "MCP Client",
        "redirect_uris": data.get("redirect_uris") or [],
        "grant_types": ["authorization_code", "refresh_token"],
        "response_types": ["code"],
        "token_endpoint_auth_method": data.get("token_endpoint_auth_method") or "client_secret_basic",
    }, status_code=201)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    response_type: str = "",
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
    ctx: OAuthContext = Depends(get_context),
):
    """OAuth 2.0 Authorization Endpoint - renders the Caspio credential form."""
    if response_type != "code":
        return oauth_error("unsupported_response_type")

    if not redirect_uri:
        return oauth_error("invalid_request", "redirect_uri required")

    pending = ctx.pending.create(
        redirect_uri=redirect_uri,
        code_challenge=code_challenge,
        code_challenge_method=code_challenge_method or "plain",
        state=state,
        client_id=client_id,
    )
    logger.info(f"[AUTHORIZE] Pending authorization created for client: {client_id or 'unknown'}")
    return HTMLResponse(render_authorize_page(pending.id))


@router.post("/oauth/authorize/submit")
async def authorize_submit(
    auth_id: str = Form(""),
    caspio_base_url: str = Form(""),
    caspio_client_id: str = Form(""),
    caspio_client_secret: str = Form(""),
    ctx: OAuthContext = Depends(get_context),
):
    """Handle credential form submission."""
    if ctx.pending.get(auth_id) is None:
        return oauth_error("invalid_request", "Invalid or expired authorization")

    base_url = caspio_base_url.strip().rstrip("/")
    client_id = caspio_client_id.strip()
    if not base_url or not client_id or not caspio_client_secret:
        return HTMLResponse(render_authorize_page(auth_id, "Please fill in all fields"), status_code=400)

    try:
        await ctx.validator.validate(base_url, client_id, caspio_client_secret)
    except CredentialValidationError as e:
        if ctx.pending.get(auth_id) is None:
            return oauth_error("invalid_request", "Authorization expired. Please reconnect from your MCP client.")
        if not ctx.pending.record_failure(auth_id, ctx.config.max_submit_attempts):
            logger.info("[AUTHORIZE] Pending authorization dropped after too many failed attempts")
            return HTMLResponse(
                render_authorize_page(auth_id, "Too many failed attempts. Please reconnect from your MCP client."),
                status_code=400,
            )
        return HTMLResponse(render_authorize_page(auth_id, str(e)), status_code=400)

    # The credential check awaited the network; the record may have expired meanwhile
    pending = ctx.pending.get(auth_id)
    if pending is None:
        return oauth_error("invalid_request", "Invalid or expired authorization")

    ctx.pending.attach_credentials(auth_id, base_url, client_id, caspio_client_secret)
    now = now_ms()
    session = ctx.sessions.add(Session(
        id=generate_id(),
        caspio_base_url=base_url,
        caspio_client_id=client_id,
        caspio_client_secret=caspio_client_secret,
        expires_at=now + SESSION_TTL_MS,
        created_at=now,
    ))
    auth_code = ctx.codes.issue(session.id, pending.code_challenge, pending.code_challenge_method)
    ctx.pending.delete(auth_id)
    logger.info(f"[AUTHORIZE] Session {session.id[:8]}... created, redirecting with code")

    params = {"code": auth_code.code}
    if pending.state:
        params["state"] = pending.state
    return RedirectResponse(url=append_query(pending.redirect_uri, params), status_code=302)


# ============== Token Endpoint ==============

@router.post("/oauth/token")
async def token(
    request: Request,
    grant_type: str = Form(None),
    code: str = Form(None),
    code_verifier: str = Form(None),
    refresh_token: str = Form(None),
    ctx: OAuthContext = Depends(get_context),
):
    """OAuth 2.0 Token Endpoint."""
    # Handle form data or JSON
    if grant_type is None:
        try:
            data = await request.json()
        except ValueError:
            return oauth_error("invalid_request")
        if not isinstance(data, dict):
            return oauth_error("invalid_request")
        grant_type = data.get("grant_type")
        code = data.get("code")
        code_verifier = data.get("code_verifier")
        refresh_token = data.get("refresh_token")

    logger.debug(f"[TOKEN] grant_type: {grant_type}")

    try:
        if grant_type == "authorization_code":
            return JSONResponse(ctx.issuer.exchange_code(code, code_verifier))
        if grant_type == "refresh_token":
            return JSONResponse(ctx.issuer.refresh(refresh_token))
    except TokenError as e:
        return JSONResponse(e.to_dict(), status_code=e.status_code)

    return oauth_error("unsupported_grant_type")


# ============== Revocation ==============

@router.post("/oauth/revoke")
async def revoke(
    token: str = Form(None),
    ctx: OAuthContext = Depends(get_context),
):
    """OAuth 2.0 Token Revocation (RFC 7009).

    Answers 200 whether or not the token was known.
    """
    if not token:
        return oauth_error("invalid_request", "token required")
    ctx.issuer.revoke(token)
    return JSONResponse({})
