"""HTTP client plumbing shared by the installer, catalog and job reporters."""

import httpx

DEFAULT_TIMEOUT = httpx.Timeout(30.0, read=60.0)

Credentials = tuple[str, str]


def create_client(
    *,
    proxy: str | None = None,
    credentials: Credentials | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: httpx.Timeout | float | None = DEFAULT_TIMEOUT,
) -> httpx.AsyncClient:
    """Create an async client configured for a vendor endpoint.

    Args:
        proxy: Optional HTTP proxy URL every request goes through
        credentials: Optional ``(username, password)`` for basic auth
        transport: Transport override, used by tests
        timeout: Request timeout

    Returns:
        A new client; callers are responsible for closing it
    """
    auth = httpx.BasicAuth(*credentials) if credentials else None
    if transport is not None:
        # An explicit transport replaces the network entirely
        return httpx.AsyncClient(
            auth=auth, transport=transport, timeout=timeout, follow_redirects=True
        )
    return httpx.AsyncClient(
        auth=auth, proxy=proxy, timeout=timeout, follow_redirects=True
    )


def is_success(response: httpx.Response) -> bool:
    return 200 <= response.status_code < 300
