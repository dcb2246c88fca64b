"""
Proxy Package
=============

This package implements the forwarding proxy that relays local requests
to the fixed HTTPS upstream and injects permissive CORS headers.

Main Components:
----------------
- routes.py: Catch-all FastAPI router, header/URL translation, relay
- exchange.py: Per-request lifecycle state machine

Usage:
------
    from cors_proxy.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .routes import AppState, cors_headers, proxy_router

__all__ = ["AppState", "cors_headers", "proxy_router"]
