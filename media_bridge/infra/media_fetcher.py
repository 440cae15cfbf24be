# media_bridge/infra/media_fetcher.py
"""
Bounded remote fetch + base64 encoding.

Downloads a resource with a single GET (no retries) and turns it into the
payload shapes AI-model APIs accept: raw base64, a data URI, and a
``{"inlineData": {"mimeType", "data"}}`` part.

Bounds:
- Wall-clock timeout for the whole transfer (settings.fetch_timeout_seconds)
- Body cap (settings.fetch_max_bytes): rejected up front from Content-Length
  when declared, and enforced chunk by chunk while streaming otherwise
- Redirect cap (settings.fetch_max_redirects)

Every failure is returned as a tagged FetchResult, never raised. Task
cancellation propagates and releases the connection;
fetch_until_disconnected cancels the fetch when the HTTP caller goes away.
"""
from __future__ import annotations

import asyncio
import socket
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

import aiohttp

from media_bridge.core.domain import (
    EncodedMedia,
    ErrorCode,
    FetchError,
    FetchErrorCode,
    FetchResult,
)
from media_bridge.infra.http_client import get_fetcher_session
from media_bridge.infra.logging_config import LogContext, get_logger, mask_url
from media_bridge.infra.metrics import inc_counter, observe_histogram

logger = get_logger(__name__)


class MediaFetchError(Exception):
    """Base error raised inside the download step."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class UpstreamStatusError(MediaFetchError):
    """Upstream answered with a non-2xx status."""


class ResponseTooLargeError(MediaFetchError):
    """Body exceeded the configured cap."""

    def __init__(self, size: int, limit: int, status: Optional[int] = None, declared: bool = False):
        self.size = size
        self.limit = limit
        what = "declared Content-Length" if declared else "received"
        super().__init__(
            f"Response too large: {what} {size} bytes exceeds limit of {limit} bytes",
            status=status,
        )


@dataclass
class FetcherConfig:
    """Limits and request identity for remote fetches"""
    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_bytes: int = 50 * 1024 * 1024
    max_redirects: int = 5
    chunk_size: int = 64 * 1024
    user_agent: str = "Mozilla/5.0 (compatible; media-bridge/1.0)"
    accept: str = "image/*"
    default_content_type: str = "image/jpeg"

    def __post_init__(self):
        if self.max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")


def get_fetcher_config() -> FetcherConfig:
    """Build FetcherConfig from application settings"""
    from media_bridge.config import settings

    return FetcherConfig(
        timeout_seconds=settings.fetch_timeout_seconds,
        connect_timeout_seconds=settings.fetch_connect_timeout_seconds,
        max_bytes=settings.fetch_max_bytes,
        max_redirects=settings.fetch_max_redirects,
        chunk_size=settings.fetch_chunk_size,
        user_agent=settings.fetch_user_agent,
        accept=settings.fetch_accept,
        default_content_type=settings.default_content_type,
    )


def classify_fetch_error(
    exc: BaseException,
    timeout_seconds: float,
    connect_timeout_seconds: Optional[float] = None,
) -> FetchError:
    """
    Map a download exception to the caller-facing FetchError.

    A connect timeout reports connect_timeout_seconds; every other timeout
    reports the overall timeout_seconds.
    """
    if isinstance(exc, ResponseTooLargeError):
        return FetchError(str(exc), FetchErrorCode.RESPONSE_TOO_LARGE.value, exc.status)

    if isinstance(exc, MediaFetchError):
        return FetchError(str(exc), FetchErrorCode.UPSTREAM_HTTP_ERROR.value, exc.status)

    if connect_timeout_seconds is not None and isinstance(exc, aiohttp.ConnectionTimeoutError):
        return FetchError(
            f"Connect timeout of {int(connect_timeout_seconds * 1000)}ms exceeded",
            FetchErrorCode.TIMEOUT.value,
        )

    # ServerTimeoutError subclasses asyncio.TimeoutError, so this goes before ClientError
    if isinstance(exc, asyncio.TimeoutError):
        return FetchError(
            f"Timeout of {int(timeout_seconds * 1000)}ms exceeded",
            FetchErrorCode.TIMEOUT.value,
        )

    if isinstance(exc, aiohttp.TooManyRedirects):
        return FetchError(
            f"Too many redirects: {exc.message or exc}",
            FetchErrorCode.TOO_MANY_REDIRECTS.value,
            exc.status or None,
        )

    if isinstance(exc, aiohttp.ClientResponseError):
        return FetchError(
            exc.message or str(exc),
            FetchErrorCode.UPSTREAM_HTTP_ERROR.value,
            exc.status or None,
        )

    if isinstance(exc, aiohttp.ClientSSLError):
        return FetchError(str(exc), FetchErrorCode.TLS_ERROR.value)

    if isinstance(exc, aiohttp.ClientConnectorError):
        if isinstance(exc.os_error, socket.gaierror):
            return FetchError(str(exc), FetchErrorCode.DNS_ERROR.value)
        return FetchError(str(exc), FetchErrorCode.CONNECTION_ERROR.value)

    if isinstance(exc, aiohttp.InvalidURL):
        return FetchError(f"Invalid URL: {exc}", ErrorCode.INVALID_URL.value)

    if isinstance(exc, (aiohttp.ServerDisconnectedError, aiohttp.ClientOSError, aiohttp.ClientPayloadError)):
        return FetchError(str(exc) or type(exc).__name__, FetchErrorCode.CONNECTION_ERROR.value)

    return FetchError(str(exc) or type(exc).__name__, FetchErrorCode.UNKNOWN_ERROR.value)


class RemoteMediaFetcher:
    """
    Single-attempt, size- and time-bounded media fetcher.

    A session can be injected (tests, custom connectors); otherwise the
    shared "fetcher" session from http_client is used.
    """

    def __init__(
        self,
        config: FetcherConfig | None = None,
        session: aiohttp.ClientSession | None = None,
    ):
        self.config = config or get_fetcher_config()
        self._session = session

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": self.config.accept,
        }

    async def fetch(self, url: str) -> FetchResult:
        """Download ``url`` and return its encoded form, or a tagged failure."""
        host = urlsplit(url).hostname or "?"
        log_ctx = LogContext(logger, url_host=host)
        log_ctx.info(f"Fetching remote media: {mask_url(url)}")

        start = time.perf_counter()
        try:
            data, content_type = await asyncio.wait_for(
                self._download(url), timeout=self.config.timeout_seconds
            )
        except Exception as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            error = classify_fetch_error(
                exc, self.config.timeout_seconds, self.config.connect_timeout_seconds
            )
            inc_counter("fetch_requests", outcome="failure", code=error.code)
            observe_histogram("fetch_duration_ms", duration_ms, outcome="failure")
            log_ctx.warning(
                f"Remote fetch failed: code={error.code} status={error.status} "
                f"duration={duration_ms:.0f}ms error={error.message}",
                extra={"outcome": "failure", "code": error.code},
            )
            return FetchResult(error=error)

        media = EncodedMedia.from_bytes(data, content_type, source_url=url)
        del data

        duration_ms = (time.perf_counter() - start) * 1000
        inc_counter("fetch_requests", outcome="success")
        observe_histogram("fetch_duration_ms", duration_ms, outcome="success")
        log_ctx.info(
            f"Remote fetch complete: {media.size_bytes / 1024:.0f}KB, "
            f"content_type={media.content_type}, duration={duration_ms:.0f}ms",
            extra={"outcome": "success"},
        )
        return FetchResult.ok(media)

    async def _download(self, url: str) -> tuple[bytes, str]:
        """
        Stream the body into memory, aborting as soon as the cap is exceeded.

        Returns:
            (raw_bytes, content_type) tuple

        Raises:
            UpstreamStatusError: non-2xx status
            ResponseTooLargeError: body larger than config.max_bytes
            aiohttp.ClientError / asyncio.TimeoutError: transport failures
        """
        cfg = self.config
        session = self._session or get_fetcher_session()
        client_timeout = aiohttp.ClientTimeout(
            total=cfg.timeout_seconds,
            connect=cfg.connect_timeout_seconds,
        )

        async with session.get(
            url,
            headers=self._headers(),
            timeout=client_timeout,
            allow_redirects=True,
            max_redirects=cfg.max_redirects,
        ) as response:
            if not 200 <= response.status < 300:
                raise UpstreamStatusError(
                    f"Request failed with status code {response.status}",
                    status=response.status,
                )

            declared = response.content_length
            if declared is not None and declared > cfg.max_bytes:
                response.close()
                raise ResponseTooLargeError(
                    declared, cfg.max_bytes, status=response.status, declared=True
                )

            buffer = bytearray()
            async for chunk in response.content.iter_chunked(cfg.chunk_size):
                buffer.extend(chunk)
                if len(buffer) > cfg.max_bytes:
                    # Drop the connection instead of draining the rest of the body
                    response.close()
                    raise ResponseTooLargeError(len(buffer), cfg.max_bytes, status=response.status)

            content_type = (response.headers.get("Content-Type") or "").strip()
            if not content_type:
                content_type = cfg.default_content_type

            logger.debug(
                f"Download response: status={response.status}, "
                f"Content-Length={declared if declared is not None else 'absent'}, "
                f"received={len(buffer)}"
            )

            return bytes(buffer), content_type


# ---------------------------------------------------------------------------
# Global singleton
# ---------------------------------------------------------------------------

_fetcher: RemoteMediaFetcher | None = None


def get_media_fetcher() -> RemoteMediaFetcher:
    """Get the global fetcher (config read from settings on first use)"""
    global _fetcher
    if _fetcher is None:
        _fetcher = RemoteMediaFetcher()
    return _fetcher


def reset_media_fetcher() -> None:
    """Reset the global fetcher (for testing)."""
    global _fetcher
    _fetcher = None


async def fetch_and_encode(url: str) -> FetchResult:
    """Fetch ``url`` with the global fetcher and encode it."""
    return await get_media_fetcher().fetch(url)


DISCONNECT_POLL_SECONDS = 0.25


async def fetch_until_disconnected(
    fetch: Awaitable[FetchResult],
    is_disconnected: Callable[[], Awaitable[bool]],
    poll_interval: float = DISCONNECT_POLL_SECONDS,
) -> Optional[FetchResult]:
    """
    Await ``fetch`` while polling ``is_disconnected``.

    When the caller goes away the fetch task is cancelled, which closes the
    upstream response and frees its pooled connection. Returns None in that
    case. Cancelling this coroutine cancels the fetch as well.
    """
    fetch_task = asyncio.ensure_future(fetch)
    try:
        while True:
            done, _ = await asyncio.wait({fetch_task}, timeout=poll_interval)
            if done:
                return fetch_task.result()
            if await is_disconnected():
                fetch_task.cancel()
                await asyncio.wait({fetch_task})
                inc_counter("fetch_requests", outcome="cancelled")
                logger.info("Client disconnected, remote fetch cancelled")
                return None
    finally:
        if not fetch_task.done():
            fetch_task.cancel()
