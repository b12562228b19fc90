"""Caspio MCP Server - remote MCP connector for Caspio databases.

This server handles:
- OAuth 2.1 flow for MCP clients (ChatGPT, Claude, etc.) via oauth/
- MCP protocol endpoint via Streamable HTTP (/mcp)
- Caspio REST API calls on behalf of each connected session

Each MCP client authorizes once with a set of Caspio API credentials; the
server keeps them in a session and answers tool calls with them.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse

from config import Config, load_config
from logging_config import create_supabase_client, flush_logs, setup_logging
from oauth.context import build_context
from oauth.persistence import SessionBackend
from oauth.templates import render_info_page
from oauth.validator import ClientFactory, CredentialValidator

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    config: Config = None,
    backend: SessionBackend = None,
    client_factory: ClientFactory = None,
    validator: CredentialValidator = None,
) -> FastAPI:
    """Build the FastAPI app with its own session store and registries."""
    config = config or load_config()
    ctx = build_context(config, backend=backend, client_factory=client_factory, validator=validator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx.janitor.start()
        logger.info(f"[STARTUP] Janitor sweeping every {config.sweep_interval:g}s")
        try:
            yield
        finally:
            await ctx.janitor.stop()
            flush_logs()
            logger.info("[SHUTDOWN] Server stopped")

    app = FastAPI(
        title="Caspio MCP Server",
        description="Remote MCP server for Caspio databases with OAuth 2.1",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.oauth = ctx

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # ============== Include Routers ==============

    from oauth.endpoints import router as oauth_router
    from protocol import router as mcp_router
    app.include_router(oauth_router)
    app.include_router(mcp_router)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception):
        logger.exception(f"[HTTP] Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"error": "internal_error"}, status_code=500)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint for Railway."""
        return {"status": "ok", "version": VERSION}

    @app.get("/", response_class=HTMLResponse)
    async def root():
        """Root endpoint with connection instructions."""
        return render_info_page(config.base_url)

    logger.info(f"[STARTUP] BASE_URL: {config.base_url}")
    logger.info(f"[STARTUP] Sessions file: {config.sessions_file} ({len(ctx.sessions)} loaded)")
    return app


def main():
    """Run the server with uvicorn."""
    import uvicorn

    config = load_config()
    setup_logging(
        json_logs=config.log_json,
        supabase_client=create_supabase_client(config.supabase_url, config.supabase_key),
    )
    app = create_app(config)
    logger.info(f"[STARTUP] Caspio MCP Server listening on {config.host}:{config.port}")
    logger.info(f"[STARTUP] MCP endpoint: {config.base_url}/mcp")
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()
