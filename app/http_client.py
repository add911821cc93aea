"""Shared HTTP client — connection pooling for outbound webhook calls.

One module-level httpx.AsyncClient singleton. Per-request timeouts are
passed on each call, since the order-confirmation workflow can take
minutes while everything else answers within seconds.

Usage:
    from app.http_client import http
    resp = await http.post(url, json=payload, headers=headers, timeout=30)
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=50,
    max_keepalive_connections=20,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    try:
        await http.aclose()
    except RuntimeError:
        pass
