"""
Proxy error type.

Every failure the proxy handles itself is raised as a ProxyError and rendered
by the application exception handler as a plain-text `Error: {message}` body.
"""

from fastapi import status


class ProxyError(Exception):
    """
    A terminal failure for a single proxied request.

    Attributes:
        status_code: HTTP status sent to the caller
        message: Human-readable error text placed after `Error: `
    """

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
