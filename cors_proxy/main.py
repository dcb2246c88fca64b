"""
FastAPI Proxy Application Factory
=================================

Entry point for the local CORS proxy that sits between a client under
development and the remote API it talks to.

Architecture:
    Flutter/Web client → CORS proxy (this service, http://localhost:3000) → https://TARGET_HOST

Routes:
    - OPTIONS /*    : Preflight, answered locally
    - ANY /*        : Forwarded to the upstream host

Environment Variables:
    - PROXY_HOST: Interface to bind (default: 0.0.0.0)
    - PROXY_PORT: Port to bind (default: 3000)
    - TARGET_HOST: Upstream hostname (default: learn.tijusacademy.com)
    - TARGET_PORT: Upstream HTTPS port (default: 443)
    - UPSTREAM_TIMEOUT_SECONDS / UPSTREAM_CONNECT_TIMEOUT_SECONDS
    - ALLOW_METHODS / ALLOW_HEADERS: Preflight header values
    - LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    cors-proxy

    Or through uvicorn directly:
        uvicorn cors_proxy.main:create_app --factory --port 3000
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import httpx
import uvicorn

from . import __version__
from .config import Settings, get_settings, validate_configuration
from .proxy import AppState, cors_headers, proxy_router
from .proxy.routes import proxy_error_response


# Configure structured JSON logging
def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s", "module": "%(module)s", "function": "%(funcName)s"}',
        handlers=[logging.StreamHandler(sys.stdout)]
    )


# Lifespan context manager for startup/shutdown
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup tasks:
        - Validate configuration
        - Open the shared upstream HTTP client
        - Log where the proxy listens and where it forwards

    Shutdown tasks:
        - Close the upstream HTTP client
    """
    app_state: AppState = app.state.app_state
    settings = app_state.settings

    setup_logging(settings.LOG_LEVEL)
    logger = logging.getLogger("cors_proxy.main")

    report = validate_configuration(settings)
    for warning in report["warnings"]:
        logger.warning(warning)
    if not report["valid"]:
        for error in report["errors"]:
            logger.error(error)
        raise RuntimeError(f"Invalid proxy configuration: {'; '.join(report['errors'])}")

    app_state.upstream_client = httpx.AsyncClient(
        timeout=settings.upstream_timeout,
        follow_redirects=False,
        transport=app_state.transport,
    )

    logger.info(f"CORS Proxy running at {settings.local_url}/")
    logger.info(f"Forwarding requests to {settings.target_base_url}/")
    logger.info(
        f"Point the client at {settings.local_url}/api/... instead of "
        f"{settings.target_base_url}/api/... to avoid CORS failures"
    )

    yield

    # Shutdown
    await app_state.upstream_client.aclose()
    app_state.upstream_client = None
    logger.info("CORS proxy shutdown complete")


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Application factory function.

    Args:
        settings: Configuration for this proxy instance (defaults to the
            environment-loaded singleton)
        transport: Optional httpx transport for the upstream client

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="CORS Proxy",
        description="Local development proxy that adds permissive CORS headers",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.app_state = AppState(settings, transport)

    # Every path belongs to upstream, so this is the only router
    app.include_router(proxy_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> PlainTextResponse:
        """Framework-level rejections such as the 503 still carry CORS headers."""
        headers = cors_headers(settings)
        if exc.headers:
            headers.update(exc.headers)

        return PlainTextResponse(str(exc.detail), status_code=exc.status_code, headers=headers)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error and answers 500 so one failed request never takes
        the server down.
        """
        logger = logging.getLogger("cors_proxy.main")
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )

        return proxy_error_response(settings, exc)

    return app


def run() -> None:
    """Console entry point: serve the proxy with uvicorn."""
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)

    uvicorn.run(
        create_app(settings),
        host=settings.PROXY_HOST,
        port=settings.PROXY_PORT,
        log_level=settings.LOG_LEVEL.lower()
    )


if __name__ == "__main__":
    run()
