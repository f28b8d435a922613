"""
Proxy Routes - Cross-Origin Relay
=================================

This module implements the single catch-all endpoint of the service. The
request path encodes a target URL; the request is re-issued to that target
and the response is relayed back with cross-origin headers added.

Request Flow:
-------------
1. Strip the leading "/" from the path; an empty remainder serves the help text
2. Append the query string, if any, to form the raw target
3. Reject requests without an Origin or X-Requested-With header (400)
4. Parse the target URL, defaulting the scheme to http (500 on failure)
5. Copy headers except hop-by-hop and blacklisted ones
6. Send one outbound request, following redirects up to the cap (500 on failure)
7. Relay the status, filtered headers and streamed body, plus CORS headers

Endpoints:
----------
- ANY /        : Help text
- ANY /{url}   : Proxied request to {url}
"""

import logging
import re
from typing import List

import httpx
from fastapi import APIRouter, Request, status
from fastapi.responses import PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from ..config import Settings
from .client import relay_body, send_upstream
from .errors import ProxyError
from .headers import cors_headers, filter_request_headers, filter_response_headers

logger = logging.getLogger(__name__)

# Create router
proxy_router = APIRouter()

GUARD_HEADERS = ("Origin", "X-Requested-With")
GUARD_MESSAGE = "Origin or X-Requested-With must be specified."

# A target only carries its own scheme when written as scheme://
_SCHEME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*://")

HELP_TEXT = """NAME
    corsproxy - adds cors headers to requests

SYNOPSIS
    /        - Shows this message
    /{{url}}   - Requests {{url}}

DESCRIPTION
    corsproxy allows requests to be made from any origin by adding cors
    headers. It supports all HTTP methods and headers.

    The following additional headers are added to the proxied request:

        Access-Control-Allow-Origin   - Allows access from all origins
        Access-Control-Expose-Headers - Allows the browser to access
                                        all headers.
        X-Request-URL                 - The requested URL
        X-Final-URL                   - The final URL after redirects

    The timeout for requests is {timeout:g} seconds, and corsproxy will follow up
    to {max_redirects} redirects.

    To prevent abuse, the Origin or X-Requested-With headers must be set.
    These headers are set automatically when using XHR or fetch.

ABOUT
    Source Code - https://github.com/pgaskin/corsproxy
"""


# ============================================================================
# Application State
# ============================================================================

def get_app_settings(request: Request) -> Settings:
    """
    Get the immutable settings the application was built with.

    Args:
        request: FastAPI request object

    Returns:
        Settings instance stored on app.state by the application factory
    """
    return request.app.state.settings


def get_http_client(request: Request) -> httpx.AsyncClient:
    """
    Get the shared outbound HTTP client from app state.

    Args:
        request: FastAPI request object

    Returns:
        httpx.AsyncClient opened by the application lifespan

    Raises:
        ProxyError: If the lifespan has not started the client
    """
    client = getattr(request.app.state, "http_client", None)
    if client is None:
        raise ProxyError(
            "Outbound HTTP client not available",
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        )
    return client


# ============================================================================
# Target Resolution
# ============================================================================

def build_help_text(settings: Settings) -> str:
    """Render the help document for the configured timeout and redirect cap."""
    return HELP_TEXT.format(
        timeout=settings.REQUEST_TIMEOUT,
        max_redirects=settings.MAX_REDIRECTS,
    )


def extract_target(request: Request) -> str:
    """
    Derive the raw target string from the request path and query.

    The undecoded path is used when the server provides it, so escapes in
    the target URL survive the round trip.

    Args:
        request: Inbound request

    Returns:
        Path without its leading "/", with "?query" appended when present;
        empty string for the root path
    """
    raw_path = request.scope.get("raw_path")
    path = raw_path.split(b"?", 1)[0].decode("latin-1") if raw_path else request.url.path
    if path.startswith("/"):
        path = path[1:]
    if not path:
        return ""

    query = request.url.query
    if query:
        path = f"{path}?{query}"
    return path


def has_guard_header(request: Request) -> bool:
    """Whether the request carries a non-empty Origin or X-Requested-With."""
    return any(request.headers.get(name) for name in GUARD_HEADERS)


def resolve_target_url(target: str) -> httpx.URL:
    """
    Parse the raw target into an absolute URL.

    Args:
        target: Raw target from extract_target

    Returns:
        Parsed URL; "http" is used when the target names no scheme

    Raises:
        ProxyError: If the target cannot be parsed
    """
    if not _SCHEME_PATTERN.match(target):
        target = f"http://{target}"

    try:
        return httpx.URL(target)
    except httpx.InvalidURL as exc:
        raise ProxyError(str(exc)) from exc


def _request_has_body(request: Request) -> bool:
    return "content-length" in request.headers or "transfer-encoding" in request.headers


# ============================================================================
# Proxy Endpoint
# ============================================================================

async def proxy(request: Request):
    """
    Relay a request to the URL encoded in its path.

    Args:
        request: Inbound request, of any method

    Returns:
        Help text for the root path, otherwise the upstream response streamed
        with CORS headers added

    Raises:
        ProxyError: Missing guard header (400) or any parse, construction
            or transport failure (500)
    """
    settings = get_app_settings(request)
    target = extract_target(request)
    if not target:
        return PlainTextResponse(build_help_text(settings))

    if not has_guard_header(request):
        logger.warning(
            "Rejected request without Origin or X-Requested-With",
            extra={"target": target, "method": request.method},
        )
        raise ProxyError(GUARD_MESSAGE, status_code=status.HTTP_400_BAD_REQUEST)

    target_url = resolve_target_url(target)
    client = get_http_client(request)
    blacklist: List[str] = settings.header_blacklist_list

    upstream = await send_upstream(
        client,
        request.method,
        target_url,
        filter_request_headers(request.headers.items(), blacklist),
        request.stream() if _request_has_body(request) else None,
        settings.REQUEST_TIMEOUT,
    )

    upstream_headers = [
        (name.decode("latin-1"), value.decode("latin-1"))
        for name, value in upstream.headers.raw
    ]
    relayed, exposed = filter_response_headers(upstream_headers, blacklist)

    response = StreamingResponse(
        relay_body(upstream),
        status_code=upstream.status_code,
        background=BackgroundTask(upstream.aclose),
    )
    for name, value in relayed:
        response.headers.append(name, value)
    for name, value in cors_headers(str(target_url), str(upstream.url), exposed).items():
        response.headers[name] = value

    logger.info(
        f"Proxied {request.method} {target_url} -> {upstream.status_code}",
        extra={"final_url": str(upstream.url), "redirects": len(upstream.history)},
    )
    return response


# No method list: every method, including extensions such as PROPFIND, is relayed
proxy_router.add_route("/{target:path}", proxy, include_in_schema=False)
