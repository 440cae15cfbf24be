# media_bridge/infra/http_client.py
"""
Shared aiohttp sessions.

The fetcher reuses one lazily created ``ClientSession`` (and so one
connection pool) for every remote download instead of opening a session per
request. The session is bound to the event loop that first asked for it;
``close_all_sessions()`` runs from the app lifespan on shutdown.

Session profiles
~~~~~~~~~~~~~~~~
- **fetcher**: total/connect timeouts from settings, pool size
  ``settings.fetch_pool_limit``. The fetcher passes its own per-request
  ``ClientTimeout``, which takes precedence.
"""
from __future__ import annotations

import aiohttp

from media_bridge.infra.logging_config import get_logger

logger = get_logger(__name__)

FETCHER = "fetcher"

_sessions: dict[str, aiohttp.ClientSession] = {}


def _session_for(name: str, timeout: aiohttp.ClientTimeout, pool_limit: int) -> aiohttp.ClientSession:
    session = _sessions.get(name)
    if session is not None and not session.closed:
        return session

    connector = aiohttp.TCPConnector(limit=pool_limit, keepalive_timeout=30, ttl_dns_cache=300)
    session = aiohttp.ClientSession(timeout=timeout, connector=connector)
    _sessions[name] = session
    logger.debug(f"aiohttp session '{name}' opened (pool_limit={pool_limit})")
    return session


def get_fetcher_session() -> aiohttp.ClientSession:
    """Session used by RemoteMediaFetcher for convert-image downloads."""
    from media_bridge.config import settings

    timeout = aiohttp.ClientTimeout(
        total=settings.fetch_timeout_seconds,
        connect=settings.fetch_connect_timeout_seconds,
    )
    return _session_for(FETCHER, timeout, settings.fetch_pool_limit)


async def close_all_sessions() -> None:
    """Close every session opened through this module."""
    while _sessions:
        name, session = _sessions.popitem()
        if not session.closed:
            await session.close()
            logger.debug(f"aiohttp session '{name}' closed")
