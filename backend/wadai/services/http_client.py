"""
Shared long-lived httpx.AsyncClient for outbound HTTP (Mailgun email API).
Opened in the app lifespan so email delivery reuses one connection pool.
"""
from __future__ import annotations

import httpx

USER_AGENT = "wadai-auth/0.1"

_http_client: httpx.AsyncClient | None = None


def get_http_client() -> httpx.AsyncClient:
    """Return the shared client. Raises if the lifespan has not opened it yet."""
    if _http_client is None:
        raise RuntimeError("HTTP client not initialized; ensure app lifespan has run init_http_client().")
    return _http_client


def init_http_client(timeout: float = 10.0) -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = httpx.AsyncClient(timeout=timeout, headers={"User-Agent": USER_AGENT})
    return _http_client


async def close_http_client() -> None:
    global _http_client
    client, _http_client = _http_client, None
    if client is not None:
        await client.aclose()
