"""Shared HTTP client — connection pooling for outbound requests.

One module-level httpx.AsyncClient used by the LLM client and the mail
sender. Per-request timeout overrides via http.post(url, timeout=15).
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=20,
    max_keepalive_connections=10,
    keepalive_expiry=30,
)

http = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call on process shutdown."""
    try:
        await http.aclose()
    except RuntimeError:
        pass
