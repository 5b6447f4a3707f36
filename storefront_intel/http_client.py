"""Shared HTTP client — connection pooling for every destination call.

One module-level httpx.AsyncClient, reused by all destinations so the
fan-out to five sinks does not open five connection pools per event.
Per-call timeout overrides via http.post(url, json=..., timeout=5).

Usage:
    from storefront_intel.http_client import http
    resp = await http.post(url, json=payload, timeout=5)
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=50,
    max_keepalive_connections=20,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=10,
    limits=_LIMITS,
    follow_redirects=False,
    headers={"User-Agent": "storefront-intel/1.0"},
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    try:
        await http.aclose()
    except RuntimeError:
        pass
