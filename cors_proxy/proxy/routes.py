"""
Proxy Routes - Upstream Request Forwarding
==========================================

This module implements the catch-all route that forwards every request from
a locally running client to the fixed HTTPS upstream, so browser-hosted
builds can call the upstream API without tripping over CORS.

Request Flow:
-------------
1. OPTIONS requests are answered locally (200, empty body, CORS headers)
2. Any other request is forwarded with the same method, path and query
3. All inbound headers are copied except Host, which names the upstream
4. POST/PUT/PATCH bodies are streamed to upstream as they arrive; other
   methods send no body and drop the Content-Length/Transfer-Encoding headers
5. The upstream status, headers and body are streamed back unchanged,
   except Access-Control-Allow-Origin which is always "*"
6. Upstream connection failures become a 500 "Proxy Error: ..." response
"""

import logging
from typing import AsyncIterator, Dict, Iterable, List, Tuple

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect
import httpx

from ..config import Settings
from .exchange import ExchangeState, ProxyExchange

logger = logging.getLogger("cors_proxy.proxy.routes")

# Create router
proxy_router = APIRouter()

# Methods whose inbound body is piped to upstream
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Body framing headers, dropped when no body is forwarded
FRAMING_HEADERS = frozenset({b"content-length", b"transfer-encoding"})

ERROR_LABEL = "Proxy Error"


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """
    Per-application state container.

    Holds the settings the app was built with and the shared upstream
    client, which only exists between lifespan startup and shutdown.
    """

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport = None):
        self.settings = settings
        self.transport = transport
        self.upstream_client: httpx.AsyncClient = None


def get_app_state(request: Request) -> AppState:
    return request.app.state.app_state


def get_upstream_client(request: Request) -> httpx.AsyncClient:
    """
    Get the upstream HTTP client from app state.

    Args:
        request: FastAPI request object

    Returns:
        Shared httpx.AsyncClient for upstream communication

    Raises:
        HTTPException: 503 if the client has not been started
    """
    client = get_app_state(request).upstream_client
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Upstream client not initialized"
        )

    return client


# ============================================================================
# Header and URL Helpers
# ============================================================================

def cors_headers(settings: Settings) -> Dict[str, str]:
    """Permissive cross-origin headers sent on every response."""
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": settings.ALLOW_METHODS,
        "Access-Control-Allow-Headers": settings.ALLOW_HEADERS,
    }


def build_upstream_headers(
    settings: Settings,
    raw_headers: Iterable[Tuple[bytes, bytes]],
    forward_body: bool = True
) -> List[Tuple[bytes, bytes]]:
    """
    Copy inbound headers for the upstream request.

    Every header (repeated ones included) is kept verbatim except Host,
    which is replaced by the upstream hostname so virtual-host routing
    on the upstream side resolves correctly. When the body is not
    forwarded, Content-Length and Transfer-Encoding are dropped as well so
    the outbound framing matches the empty body.
    """
    skipped = {b"host"}
    if not forward_body:
        skipped |= FRAMING_HEADERS

    headers = [(b"host", settings.TARGET_HOST.encode("ascii"))]
    headers.extend(
        (name, value) for name, value in raw_headers
        if name.lower() not in skipped
    )
    return headers


def build_upstream_url(settings: Settings, request: Request) -> httpx.URL:
    """
    Upstream URL carrying the inbound path and query string unmodified.
    """
    raw_path = request.scope.get("raw_path") or request.url.path.encode("utf-8")
    raw_path = raw_path.split(b"?", 1)[0]

    query_string = request.scope.get("query_string", b"")
    if query_string:
        raw_path = raw_path + b"?" + query_string

    return httpx.URL(settings.target_base_url).copy_with(raw_path=raw_path)


# ============================================================================
# Response Builders
# ============================================================================

def preflight_response(settings: Settings) -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=cors_headers(settings))


def proxy_error_response(settings: Settings, exc: Exception) -> PlainTextResponse:
    """
    Build the 500 response returned when upstream cannot be reached.
    """
    message = str(exc) or type(exc).__name__
    return PlainTextResponse(
        f"{ERROR_LABEL}: {message}",
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        headers=cors_headers(settings),
    )


async def stream_upstream_body(
    upstream_response: httpx.Response,
    exchange: ProxyExchange
) -> AsyncIterator[bytes]:
    """
    Yield the upstream body exactly as received (no decompression).

    The response has already started once this runs, so a failure here can
    only be logged and the stream aborted.
    """
    try:
        async for chunk in upstream_response.aiter_raw():
            yield chunk
    except httpx.RequestError as e:
        logger.error(
            f"Upstream stream failed mid-relay: {e}",
            extra={
                "method": exchange.method,
                "path": exchange.path,
                "exception_type": type(e).__name__,
            }
        )
        raise
    finally:
        exchange.advance(ExchangeState.RESPONDED)


def relay_response(
    settings: Settings,
    upstream_response: httpx.Response,
    exchange: ProxyExchange
) -> StreamingResponse:
    """
    Relay the upstream response to the caller.

    Base CORS headers are set first, upstream headers are copied on top
    (repeated headers such as Set-Cookie included), and finally
    Access-Control-Allow-Origin is forced to "*".
    """
    response = StreamingResponse(
        stream_upstream_body(upstream_response, exchange),
        status_code=upstream_response.status_code,
        background=BackgroundTask(upstream_response.aclose),
    )

    for name, value in cors_headers(settings).items():
        if name not in upstream_response.headers:
            response.headers[name] = value

    for name, value in upstream_response.headers.raw:
        response.raw_headers.append((name.lower(), value))

    response.headers["Access-Control-Allow-Origin"] = "*"

    return response


# ============================================================================
# Proxy Endpoint
# ============================================================================

async def proxy_request(request: Request):
    """
    Forward any request to the upstream host.

    Flow:
    1. Answer OPTIONS locally without contacting upstream
    2. Translate the request (same method/path/query, Host overridden)
    3. Stream the body for POST/PUT/PATCH, send none otherwise
    4. Relay status, headers and body once upstream answers
    5. Turn connection failures into a 500 "Proxy Error" response

    Args:
        request: Incoming request (any method, any path)

    Returns:
        Preflight, relayed, or error response
    """
    settings = get_app_state(request).settings
    exchange = ProxyExchange(request.method, request.url.path)

    # Handle preflight OPTIONS request
    if request.method == "OPTIONS":
        exchange.advance(ExchangeState.RESPONDED)
        return preflight_response(settings)

    client = get_upstream_client(request)
    url = build_upstream_url(settings, request)
    forward_body = request.method in BODY_METHODS
    headers = build_upstream_headers(settings, request.headers.raw, forward_body)
    content = request.stream() if forward_body else None

    logger.info(f"Proxying {request.method} request to: {url}")
    exchange.advance(ExchangeState.FORWARDING)

    upstream_request = client.build_request(
        request.method,
        url,
        headers=headers,
        content=content,
    )

    try:
        upstream_response = await client.send(upstream_request, stream=True)

    except httpx.RequestError as e:
        logger.error(
            f"Proxy request error: {e}",
            extra={
                "method": request.method,
                "target": str(url),
                "exception_type": type(e).__name__,
            }
        )
        exchange.advance(ExchangeState.RESPONDED)
        return proxy_error_response(settings, e)

    except ClientDisconnect as e:
        logger.warning(
            "Client disconnected while its request body was being forwarded",
            extra={"method": request.method, "target": str(url)}
        )
        exchange.advance(ExchangeState.RESPONDED)
        return proxy_error_response(settings, e)

    exchange.advance(ExchangeState.RELAYING)
    logger.debug(
        f"Upstream answered {upstream_response.status_code}",
        extra={"method": request.method, "target": str(url)}
    )

    return relay_response(settings, upstream_response, exchange)


# No method list: every verb is forwarded
proxy_router.add_route("/{path:path}", proxy_request, include_in_schema=False)
