"""HTTP server for ``accessgate serve``.

Builds the FastAPI app with the ``/api/v1/`` routers, validates group
configuration and signing keys at startup, and runs the authorization
code sweeper for the lifetime of the app.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(app):
    from accessgate import lifecycle
    from accessgate.auth.tokens import get_token_service
    from accessgate.auth.users import get_user_manager
    from accessgate.config import get_settings
    from accessgate.oauth2.server import get_oauth_server

    settings = get_settings()
    # Configuration errors are fatal here rather than per request
    get_user_manager().resolver.validate()
    logger.info("JWT algorithm: %s", get_token_service().algorithm)

    server = get_oauth_server()
    server.codes.start_sweeper(interval=settings.code_sweep_interval_seconds)
    logger.info("accessgate ready (issuer=%s)", settings.jwt_issuer)
    try:
        yield
    finally:
        await lifecycle.shutdown_all()
        logger.info("accessgate stopped")


def create_api_app():
    """Build the FastAPI application."""
    from fastapi import FastAPI, Request
    from fastapi.responses import JSONResponse

    from accessgate import __version__
    from accessgate.api.v1 import mount_v1_routers
    from accessgate.errors import ConfigurationError, OAuthError

    app = FastAPI(
        title="accessgate",
        description="Group-based access control and OAuth2 authorization server.",
        version=__version__,
        docs_url="/api/v1/docs",
        redoc_url="/api/v1/redoc",
        openapi_url="/api/v1/openapi.json",
        lifespan=_lifespan,
    )

    @app.exception_handler(OAuthError)
    async def _oauth_error(request: Request, exc: OAuthError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(ConfigurationError)
    async def _config_error(request: Request, exc: ConfigurationError):
        logger.error("Configuration error while handling %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "server_error", "error_description": "Server misconfigured"},
        )

    mount_v1_routers(app)
    return app


def run_api_server(host: str = "127.0.0.1", port: int = 8890, dev: bool = False) -> None:
    """Start the API server."""
    import uvicorn

    print("\n" + "=" * 50)
    print("ACCESSGATE")
    print("=" * 50)
    print(f"\nAPI docs: http://{'localhost' if host == '127.0.0.1' else host}:{port}/api/v1/docs\n")

    if dev:
        import pathlib

        src_dir = str(pathlib.Path(__file__).resolve().parent.parent)
        uvicorn.run(
            "accessgate.api.serve:create_api_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            reload_dirs=[src_dir],
            reload_includes=["*.py"],
            log_level="debug",
        )
    else:
        uvicorn.run(create_api_app(), host=host, port=port)
