"""
FastAPI CORS Proxy Application Factory
======================================

This is the main entry point for the CORS proxy: a relay that lets browser
clients fetch arbitrary third-party URLs by re-issuing the request and adding
permissive cross-origin headers to the response.

Architecture:
    Browser (XHR/fetch) → corsproxy (this service) → Target URL

Routes:
    - /        : Help text
    - /{url}   : Proxied request to {url} (requires Origin or X-Requested-With)

Environment Variables (all optional):
    - CORSPROXY_LISTEN_ADDR: Address to listen on (default: :8000)
    - CORSPROXY_REQUEST_TIMEOUT: Outbound request timeout in seconds (default: 15)
    - CORSPROXY_MAX_REDIRECTS: Maximum redirects to follow (default: 10)
    - CORSPROXY_HEADER_BLACKLIST: Comma-separated headers to strip (default: none)
    - CORSPROXY_LOG_LEVEL: Logging level (default: INFO)

Running the Service:
    Command line (flags override the environment):
        corsproxy --addr :8000 --timeout 15 --max-redirects 10 -b Cookie

    With uvicorn:
        uvicorn corsproxy.app.main:app --host 0.0.0.0 --port 8000
"""

import argparse
import logging
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from corsproxy.app.config import Settings, get_settings
from corsproxy.app.proxy import ProxyError, proxy_router
from corsproxy.app.proxy.client import create_http_client

logger = logging.getLogger(__name__)


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


# Create FastAPI application
def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application instance with:
        - Lifespan management of the shared outbound HTTP client
        - The catch-all proxy route
        - Exception handlers rendering plain-text errors

    Interactive docs are disabled because every path is a proxy target.

    Args:
        settings: Immutable settings; loaded from the environment when omitted
        transport: Optional httpx transport for the outbound client

    Returns:
        FastAPI: Configured application instance
    """
    settings = settings or get_settings()

    # Lifespan context manager for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)

        async with create_http_client(settings, transport) as client:
            app.state.http_client = client
            logger.info(
                "Starting CORS proxy",
                extra={
                    "request_timeout": settings.REQUEST_TIMEOUT,
                    "max_redirects": settings.MAX_REDIRECTS,
                    "header_blacklist": settings.header_blacklist_list,
                }
            )

            yield

            logger.info("Shutting down CORS proxy")
            app.state.http_client = None

    app = FastAPI(
        title="corsproxy",
        description="Adds CORS headers to requests for arbitrary URLs",
        version="1.0.0",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.settings = settings
    app.state.http_client = None

    app.include_router(proxy_router)

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> PlainTextResponse:
        """
        Render a handled proxy failure as `Error: {message}`.

        Args:
            request: FastAPI request object
            exc: The failure raised by the proxy route

        Returns:
            PlainTextResponse: Error response with the failure's status code
        """
        if exc.status_code >= 500:
            logger.warning(
                f"Proxy request failed: {exc.message}",
                extra={"path": request.url.path, "method": request.method}
            )
        return PlainTextResponse(f"Error: {exc.message}", status_code=exc.status_code)

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        """
        Global exception handler for unhandled errors.

        Logs the error with traceback and returns a plain-text 500.
        """
        logger.error(
            f"Unhandled exception: {str(exc)}",
            extra={
                "path": request.url.path,
                "method": request.method,
                "exception_type": type(exc).__name__
            },
            exc_info=True
        )
        return PlainTextResponse(f"Error: {exc}", status_code=500)

    return app


# =============================================================================
# Command Line
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    """Command-line parser; unset flags fall back to the environment."""
    parser = argparse.ArgumentParser(
        prog="corsproxy",
        description="Run the server and go to it in a web browser for API documentation.",
    )
    parser.add_argument("-a", "--addr", dest="LISTEN_ADDR", help="Address to listen on (default :8000)")
    parser.add_argument("-t", "--timeout", dest="REQUEST_TIMEOUT", type=float, help="Request timeout in seconds (default 15)")
    parser.add_argument("-r", "--max-redirects", dest="MAX_REDIRECTS", type=int, help="Maximum number of redirects to follow (default 10)")
    parser.add_argument(
        "-b", "--header-blacklist",
        dest="HEADER_BLACKLIST",
        action="append",
        metavar="HEADERS",
        help="Headers to remove from the request and response (comma-separated, repeatable)",
    )
    return parser


def settings_from_args(argv: Optional[List[str]] = None) -> Settings:
    """
    Build Settings from the environment with command-line overrides.

    Args:
        argv: Arguments without the program name; sys.argv when omitted

    Returns:
        Validated, immutable Settings

    Raises:
        SystemExit: On unknown arguments or invalid values
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    overrides = {key: value for key, value in vars(args).items() if value is not None}
    if "HEADER_BLACKLIST" in overrides:
        overrides["HEADER_BLACKLIST"] = ",".join(overrides["HEADER_BLACKLIST"])

    try:
        return Settings(**overrides)
    except ValidationError as e:
        parser.error(str(e))


def main(argv: Optional[List[str]] = None) -> None:
    """Console entry point: parse flags and serve until interrupted."""
    settings = settings_from_args(argv)
    setup_logging(settings.LOG_LEVEL)

    logger.info(f"Listening on {settings.LISTEN_ADDR}")
    uvicorn.run(
        create_app(settings),
        host=settings.listen_host,
        port=settings.listen_port,
        log_level=settings.LOG_LEVEL.lower(),
        server_header=False,
        date_header=False,
    )


# Create app instance for uvicorn
app = create_app()


if __name__ == "__main__":
    main()
