"""
Outbound HTTP client.

A single httpx.AsyncClient is shared by every request. Redirects are walked
hop by hop up to the configured cap, and each exchange is bounded by one
deadline that covers connecting, every redirect hop and receiving the final
headers. A 307 or 308 that would resend an already streamed request body is
returned as the response instead of being followed. The body of the final
response is left unread so it can be streamed to the caller.
"""

import asyncio
import logging
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import httpx

from ..config import Settings
from .errors import ProxyError

logger = logging.getLogger(__name__)


def create_http_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    Create the shared outbound client.

    Args:
        settings: Application settings (timeout and redirect cap)
        transport: Optional transport override, used by tests

    Returns:
        Configured httpx.AsyncClient; the caller owns closing it
    """
    # The client is shared by all callers, so it must never store cookies
    cookie_jar = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))

    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.REQUEST_TIMEOUT),
        follow_redirects=False,
        max_redirects=settings.MAX_REDIRECTS,
        cookies=cookie_jar,
        transport=transport,
    )


async def send_upstream(
    client: httpx.AsyncClient,
    method: str,
    url: httpx.URL,
    headers: Sequence[Tuple[str, str]],
    body: Optional[AsyncIterator[bytes]],
    timeout: float,
) -> httpx.Response:
    """
    Issue one outbound request, chasing redirects, without reading the body.

    No retries are attempted. The request body is consumed at most once, so
    a redirect that would need to replay it is not followed; that redirect
    response is returned to the caller as is.

    Args:
        client: Shared outbound client
        method: HTTP method copied from the inbound request
        url: Resolved target URL
        headers: Filtered request headers
        body: Inbound body stream, or None when the request has no body
        timeout: Deadline in seconds for the whole exchange

    Returns:
        The final upstream response, opened in streaming mode. The caller
        must close it.

    Raises:
        ProxyError: If the request cannot be built, the transport fails, the
            deadline passes or the redirect cap is exceeded
    """
    try:
        request = client.build_request(method, url, headers=list(headers), content=body)
    except (httpx.InvalidURL, ValueError, TypeError) as exc:
        raise ProxyError(_describe(exc)) from exc

    try:
        return await asyncio.wait_for(
            _send_following_redirects(client, request, streamed_body=body is not None),
            timeout,
        )
    except asyncio.TimeoutError:
        raise ProxyError(
            f'{method} "{url}": timed out after {timeout:g} seconds'
        ) from None
    except (httpx.HTTPError, httpx.StreamError) as exc:
        raise ProxyError(f'{method} "{url}": {_describe(exc)}') from exc


async def _send_following_redirects(
    client: httpx.AsyncClient,
    request: httpx.Request,
    streamed_body: bool,
) -> httpx.Response:
    """Send request and walk its redirect chain, closing every hop but the last."""
    history: List[httpx.Response] = []
    response = await client.send(request, stream=True, follow_redirects=False)

    try:
        while response.next_request is not None:
            next_request = response.next_request
            # 307/308 keep the method and body; a streamed body cannot be resent
            if streamed_body and next_request.stream is request.stream:
                break
            if len(history) >= client.max_redirects:
                raise httpx.TooManyRedirects(
                    f"stopped after {client.max_redirects} redirects",
                    request=next_request,
                )
            await response.aclose()
            history.append(response)
            response = await client.send(next_request, stream=True, follow_redirects=False)
    except BaseException:
        await response.aclose()
        raise

    response.history = history
    return response


async def relay_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """
    Yield the upstream body exactly as received and release the response.

    Content encodings are not decoded, so the bytes match what the target
    sent. A transport error mid-stream propagates and truncates the relay.
    """
    try:
        async for chunk in response.aiter_raw():
            yield chunk
    except httpx.HTTPError as exc:
        logger.warning(f"Upstream body relay interrupted for {response.url}: {_describe(exc)}")
        raise
    finally:
        await response.aclose()


def _describe(exc: Exception) -> str:
    return str(exc) or type(exc).__name__
