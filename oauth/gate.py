"""Bearer token resolution for the MCP endpoint.

Tokens are opaque and resolved against the session store. An unresolved
token gets a 401 pointing at the protected resource metadata (RFC 9728).
"""

import logging
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from oauth.models import Session
from oauth.stores import SessionStore

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def resolve_session(request: Request, sessions: SessionStore) -> Optional[Session]:
    """Return the live session owning the request's bearer token, if any."""
    token = extract_bearer_token(request)
    if token is None:
        logger.info("[AUTH] Request rejected: no Bearer token")
        return None

    session = sessions.by_access_token(token)
    if session is None:
        logger.info("[AUTH] Request rejected: invalid or expired token")
    return session


def unauthorized_response(server_url: str, error_description: str = "Authentication required") -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        {"error": "unauthorized", "error_description": error_description},
        status_code=401,
        headers={
            "WWW-Authenticate": f'Bearer resource_metadata="{server_url}/.well-known/oauth-protected-resource"'
        }
    )
