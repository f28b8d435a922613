"""
Header filtering and cross-origin annotation.

Headers are copied between the caller and the target in both directions,
except hop-by-hop headers and the configured blacklist. Header names are
compared case-insensitively, since ASGI delivers them lowercased while
upstream responses keep whatever case the target sent.
"""

from typing import Dict, Iterable, List, Sequence, Tuple

# Hop-by-hop headers that are never forwarded in either direction
HOP_HEADERS = (
    "Connection",
    "Keep-Alive",
    "Public",
    "Proxy-Authenticate",
    "Transfer",
    "Upgrade",
)

# Framing headers set by the HTTP client/server on each side of the relay
TRANSPORT_HEADERS = frozenset({"host", "transfer-encoding"})

REQUEST_URL_HEADER = "X-Request-URL"
FINAL_URL_HEADER = "X-Final-URL"


def excluded_names(blacklist: Iterable[str]) -> frozenset:
    """Lowercased set of hop headers plus the configured blacklist."""
    return frozenset(name.lower() for name in (*HOP_HEADERS, *blacklist))


def filter_request_headers(
    headers: Iterable[Tuple[str, str]],
    blacklist: Sequence[str],
) -> List[Tuple[str, str]]:
    """
    Build the outbound header list from the inbound request headers.

    Args:
        headers: Inbound (name, value) pairs, duplicates allowed
        blacklist: Configured header blacklist

    Returns:
        (name, value) pairs to send to the target
    """
    excluded = excluded_names(blacklist) | TRANSPORT_HEADERS
    return [(name, value) for name, value in headers if name.lower() not in excluded]


def filter_response_headers(
    headers: Iterable[Tuple[str, str]],
    blacklist: Sequence[str],
) -> Tuple[List[Tuple[str, str]], List[str]]:
    """
    Select the upstream response headers to relay to the caller.

    Args:
        headers: Upstream (name, value) pairs in received order
        blacklist: Configured header blacklist

    Returns:
        Tuple of the (name, value) pairs to relay and the distinct header
        names that were copied, in first-seen order
    """
    excluded = excluded_names(blacklist) | TRANSPORT_HEADERS
    relayed: List[Tuple[str, str]] = []
    exposed: List[str] = []
    seen = set()

    for name, value in headers:
        key = name.lower()
        if key in excluded:
            continue
        relayed.append((name, value))
        if key not in seen:
            seen.add(key)
            exposed.append(name)

    return relayed, exposed


def cors_headers(request_url: str, final_url: str, exposed: Sequence[str]) -> Dict[str, str]:
    """
    Headers set unconditionally on every proxied response.

    Args:
        request_url: Resolved target URL, before redirects
        final_url: URL reached after following redirects
        exposed: Names of the upstream headers that were relayed

    Returns:
        Mapping of header name to value, overriding any relayed value
    """
    return {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Expose-Headers": ",".join([REQUEST_URL_HEADER, *exposed]),
        REQUEST_URL_HEADER: request_url,
        FINAL_URL_HEADER: final_url,
    }
