"""
Proxy Package
=============

This package implements the cross-origin relay: the catch-all route that
forwards a request to the URL encoded in its path and returns the response
with CORS headers added.

Main Components:
----------------
- routes.py: FastAPI router with the catch-all proxy endpoint and help text
- client.py: Shared outbound client, single-attempt send, body relay
- headers.py: Hop-by-hop/blacklist filtering and CORS annotation
- errors.py: ProxyError, rendered as a plain-text error response

Usage:
------
    from corsproxy.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .errors import ProxyError
from .routes import proxy_router

__all__ = ["ProxyError", "proxy_router"]
