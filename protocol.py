"""Streamable HTTP MCP endpoint.

JSON-RPC 2.0 requests arrive on POST /mcp. Handshake and catalog methods
answer without credentials; everything else needs a bearer token issued by
the OAuth flow, and runs against a Caspio client built from that session.
"""

import json
import logging
import re
from typing import Any
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
import mcp.types as types
from pydantic import ValidationError

from caspio_client import CaspioAPIError, CaspioClient
from oauth.context import OAuthContext, get_context
from oauth.gate import resolve_session, unauthorized_response
from tools import execute_tool, list_tools

logger = logging.getLogger(__name__)

router = APIRouter(tags=["mcp"])

SERVER_NAME = "caspio-mcp-server"
SERVER_VERSION = "1.0.0"
PROTOCOL_VERSION = "2024-11-05"

UNAUTHENTICATED_METHODS = {
    "initialize",
    "tools/list",
    "notifications/initialized",
    "resources/list",
    "resources/read",
}

RESOURCE_URI = re.compile(r"^caspio://(tables|views)/([^/]+)/schema$")


class RPCError(Exception):
    """Error reported inside the JSON-RPC envelope."""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def rpc_result(request_id: Any, result: Any) -> JSONResponse:
    return JSONResponse({"jsonrpc": "2.0", "id": request_id, "result": result})


def rpc_error(request_id: Any, code: int, message: str, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}},
        status_code=status_code,
    )


def server_info() -> dict:
    return {"name": SERVER_NAME, "version": SERVER_VERSION, "protocolVersion": PROTOCOL_VERSION}


# ============== Method handlers ==============

def handle_unauthenticated(method: str) -> Any:
    if method == "initialize":
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            "capabilities": {"tools": {}},
        }
    if method == "notifications/initialized":
        return {}
    if method == "tools/list":
        return {"tools": list_tools()}
    if method == "resources/list":
        return {"resources": []}
    if method == "resources/read":
        raise RPCError(
            types.INTERNAL_ERROR,
            "Resources not available. Use caspio_get_table_schema or caspio_get_view_schema tools instead.",
        )
    raise RPCError(types.METHOD_NOT_FOUND, f"Method {method} requires authentication")


async def list_resources(client: CaspioClient) -> dict:
    try:
        tables = await client.list_tables()
        views = await client.list_views()
    except Exception as e:
        logger.warning(f"[MCP] resources/list failed, returning empty list: {e}")
        return {"resources": []}

    resources = [
        {"uri": f"caspio://tables/{name}/schema", "name": f"Table: {name}", "mimeType": "application/json"}
        for name in tables
    ]
    resources.extend(
        {"uri": f"caspio://views/{name}/schema", "name": f"View: {name}", "mimeType": "application/json"}
        for name in views
    )
    return {"resources": resources}


async def read_resource(client: CaspioClient, uri: str) -> dict:
    match = RESOURCE_URI.match(uri or "")
    if not match:
        raise RPCError(types.INTERNAL_ERROR, f"Unknown resource: {uri}")

    kind, name = match.group(1), unquote(match.group(2))
    if kind == "tables":
        schema = await client.get_table_definition(name)
    else:
        schema = await client.get_view_definition(name)

    return {"contents": [{"uri": uri, "mimeType": "application/json", "text": json.dumps(schema, indent=2)}]}


async def handle_authenticated(method: str, params: dict, client: CaspioClient) -> Any:
    if method == "tools/call":
        result = await execute_tool(params.get("name"), params.get("arguments") or {}, client)
        return result.to_call_result().model_dump(by_alias=True, exclude_none=True)
    if method == "resources/list":
        return await list_resources(client)
    if method == "resources/read":
        return await read_resource(client, params.get("uri"))
    raise RPCError(types.METHOD_NOT_FOUND, f"Unknown method: {method}")


# ============== Endpoints ==============

def parse_message(payload: Any) -> types.JSONRPCRequest | types.JSONRPCNotification:
    """Validate a decoded JSON-RPC 2.0 envelope; messages without an id are notifications."""
    if isinstance(payload, dict) and payload.get("id") is not None:
        return types.JSONRPCRequest.model_validate(payload)
    return types.JSONRPCNotification.model_validate(payload)


@router.get("/mcp")
async def mcp_probe():
    """Capability probe for clients that GET the endpoint first."""
    return {**server_info(), "capabilities": {"tools": {}, "resources": {}}}


@router.post("/mcp")
async def mcp_endpoint(request: Request, ctx: OAuthContext = Depends(get_context)):
    body = await request.body()
    if not body.strip():
        logger.info("[MCP] Empty body received, returning server info")
        return rpc_result(None, server_info())

    try:
        rpc_request = json.loads(body)
    except ValueError:
        logger.info("[MCP] Rejected unparseable request body")
        return rpc_error(None, types.PARSE_ERROR, "Parse error: Invalid JSON", status_code=400)

    try:
        message = parse_message(rpc_request)
    except ValidationError:
        logger.info("[MCP] Rejected malformed JSON-RPC envelope")
        return rpc_error(None, types.INVALID_REQUEST, "Invalid Request", status_code=400)

    request_id = getattr(message, "id", None)
    method = message.method
    params = message.params or {}
    logger.info(f"[MCP] Method: {method}, ID: {request_id}")

    session = None
    if method in UNAUTHENTICATED_METHODS:
        # Resource methods use the caller's session when one is presented
        if method.startswith("resources/") and request.headers.get("Authorization"):
            session = resolve_session(request, ctx.sessions)
        if session is None:
            try:
                return rpc_result(request_id, handle_unauthenticated(method))
            except RPCError as e:
                return rpc_error(request_id, e.code, e.message)
    else:
        session = resolve_session(request, ctx.sessions)
        if session is None:
            return unauthorized_response(ctx.server_url, "Invalid or expired token")

    # A fresh client per request; Caspio tokens are never shared between calls
    async with ctx.client_factory(
        session.caspio_base_url, session.caspio_client_id, session.caspio_client_secret
    ) as client:
        try:
            result = await handle_authenticated(method, params, client)
        except RPCError as e:
            return rpc_error(request_id, e.code, e.message)
        except CaspioAPIError as e:
            logger.warning(f"[MCP] {method} failed: {e}")
            status = f" (status {e.status_code})" if e.status_code else ""
            return rpc_error(request_id, types.INTERNAL_ERROR, f"Caspio request failed{status}")
        except Exception:
            logger.exception(f"[MCP] {method} raised an unexpected error")
            return rpc_error(request_id, types.INTERNAL_ERROR, "Internal error")

    return rpc_result(request_id, result)
