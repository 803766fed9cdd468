"""Shared HTTP clients for outbound requests.

Two connection-pooled ``httpx.AsyncClient`` instances live here: one for
the analytics collector and one for the legacy upstream site.  Both are
created lazily on first use and closed from the application lifespan.
"""

from __future__ import annotations

import asyncio

import httpx

from core.config import get_settings

_collector_client: httpx.AsyncClient | None = None
_legacy_client: httpx.AsyncClient | None = None
_client_lock = asyncio.Lock()


async def get_collector_client() -> httpx.AsyncClient:
    """Get or create the shared client used to tee events to the collector."""
    global _collector_client

    if _collector_client is not None and not _collector_client.is_closed:
        return _collector_client

    async with _client_lock:
        if _collector_client is not None and not _collector_client.is_closed:
            return _collector_client

        settings = get_settings()
        _collector_client = httpx.AsyncClient(
            timeout=settings.http_timeout,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
        return _collector_client


async def get_legacy_client() -> httpx.AsyncClient:
    """Get or create the shared client used to proxy to the legacy site.

    Redirects are not followed; the legacy site's own redirects are relayed
    to the browser unchanged.
    """
    global _legacy_client

    if _legacy_client is not None and not _legacy_client.is_closed:
        return _legacy_client

    async with _client_lock:
        if _legacy_client is not None and not _legacy_client.is_closed:
            return _legacy_client

        settings = get_settings()
        _legacy_client = httpx.AsyncClient(
            base_url=settings.legacy_origin,
            timeout=settings.http_timeout,
            follow_redirects=False,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
        return _legacy_client


async def close_http_clients() -> None:
    """Close the shared HTTP clients (called on application shutdown)."""
    global _collector_client, _legacy_client
    for client in (_collector_client, _legacy_client):
        if client is not None and not client.is_closed:
            await client.aclose()
    _collector_client = None
    _legacy_client = None
