"""Rate-limited async HTTP client (the engine's Fetcher).

Contract consumed by discovery, classification and research:
  - Redirects are followed here, one hop at a time, so every hop goes
    through the per-host limiter; the final URL is reported.
  - Retries on 408/429/5xx and transport errors with exponential backoff
    plus jitter, bounded by ``retries``.
  - Bodies are truncated at ``max_bytes``; only textual content is read.
  - At most one request in flight per host, spaced by ``host_interval_ms``.
    Excess requests queue, they are never rejected.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Protocol, TypeVar, runtime_checkable

import httpx

from src.core.config import HttpConfig
from src.core.schemas import FetchResult
from src.net.urls import clean_url, hostname, to_absolute_url

logger = logging.getLogger(__name__)

_TEXTUAL_MARKERS = ("text/", "json", "xml", "javascript")
_DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

BACKOFF_BASE_S = 0.5
BACKOFF_JITTER_S = 0.2
CANONICAL_TIMEOUT_MS = 12000

T = TypeVar("T")


class FetchError(Exception):
    """Raised when a URL could not be fetched after all retries."""


@runtime_checkable
class Fetcher(Protocol):
    """What the engine needs from an HTTP client."""

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
        retries: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult: ...

    async def fetch_maybe(
        self,
        url: str,
        *,
        method: str = "GET",
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
        retries: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult | None: ...


def is_retryable_status(status: int) -> bool:
    return status in (408, 429) or 500 <= status <= 599


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry ``attempt + 1``."""
    return BACKOFF_BASE_S * 2**attempt + random.uniform(0.0, BACKOFF_JITTER_S)


class HostRateLimiter:
    """Serializes requests per host and spaces their start times.

    One ``asyncio.Lock`` per host keeps a single request in flight; the
    next-allowed timestamp enforces the minimum interval between starts.
    Entries are kept per host for the lifetime of the limiter (one run),
    so it grows with the number of distinct hosts contacted.
    """

    def __init__(self, interval_s: float) -> None:
        self._interval_s = interval_s
        self._locks: dict[str, asyncio.Lock] = {}
        self._next_allowed: dict[str, float] = {}

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[host] = lock
        return lock

    async def run(self, host: str, task: Callable[[], Awaitable[T]]) -> T:
        async with self._lock_for(host):
            wait_s = self._next_allowed.get(host, 0.0) - time.monotonic()
            if wait_s > 0:
                await asyncio.sleep(wait_s)
            self._next_allowed[host] = time.monotonic() + self._interval_s
            return await task()


class HttpClient:
    """Async context manager owning one ``httpx.AsyncClient``.

    Usage::

        async with HttpClient(config) as client:
            result = await client.fetch_maybe("https://example.org/careers")
    """

    def __init__(
        self,
        config: HttpConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or HttpConfig()
        self._limiter = HostRateLimiter(self._config.host_interval_ms / 1000)
        self._client = httpx.AsyncClient(
            follow_redirects=False,
            headers={"User-Agent": self._config.user_agent, "Accept": _DEFAULT_ACCEPT},
            transport=transport,
        )

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch(
        self,
        url: str,
        *,
        method: str = "GET",
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
        retries: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        """Fetch ``url`` following redirects. Raises FetchError on failure."""
        retries = self._config.default_retries if retries is None else retries
        cleaned = clean_url(url)
        last_error: Exception | None = None

        for attempt in range(retries + 1):
            try:
                result = await self._fetch_with_redirects(
                    cleaned, method, timeout_ms, max_bytes, headers,
                )
            except (httpx.InvalidURL, ValueError) as e:
                # Bad hosts (IDNA, control characters) never succeed on retry.
                msg = f"Invalid URL while fetching {cleaned}: {e}"
                raise FetchError(msg) from e
            except (httpx.HTTPError, FetchError) as e:
                last_error = e
                logger.debug("Fetch attempt %d for %s failed: %s", attempt + 1, cleaned, e)
            else:
                if not (is_retryable_status(result.status) and attempt < retries):
                    return result
                logger.debug("Retryable status %d for %s", result.status, cleaned)
            if attempt < retries:
                await asyncio.sleep(backoff_delay(attempt))

        msg = f"Request failed for {cleaned}: {last_error}"
        raise FetchError(msg)

    async def fetch_maybe(
        self,
        url: str,
        *,
        method: str = "GET",
        timeout_ms: int | None = None,
        max_bytes: int | None = None,
        retries: int | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult | None:
        """Like ``fetch`` but returns None instead of raising."""
        try:
            return await self.fetch(
                url,
                method=method,
                timeout_ms=timeout_ms,
                max_bytes=max_bytes,
                retries=retries,
                headers=headers,
            )
        except FetchError as e:
            logger.debug("%s", e)
            return None

    async def _fetch_with_redirects(
        self,
        url: str,
        method: str,
        timeout_ms: int | None,
        max_bytes: int | None,
        headers: dict[str, str] | None,
    ) -> FetchResult:
        current = url
        for _ in range(self._config.max_redirects + 1):
            host = hostname(current)
            if not host:
                msg = f"Malformed URL: {current!r}"
                raise FetchError(msg)

            hop_url, hop_method = current, method

            async def _task() -> FetchResult:
                return await self._perform(hop_url, hop_method, timeout_ms, max_bytes, headers)

            result = await self._limiter.run(host, _task)

            location = result.headers.get("location")
            if location and 300 <= result.status < 400:
                current = clean_url(to_absolute_url(location, current))
                if result.status == 303:
                    method = "GET"
                continue
            return result

        msg = f"Too many redirects for {url}"
        raise FetchError(msg)

    async def _perform(
        self,
        url: str,
        method: str,
        timeout_ms: int | None,
        max_bytes: int | None,
        headers: dict[str, str] | None,
    ) -> FetchResult:
        timeout_s = (timeout_ms or self._config.timeout_ms) / 1000
        limit = self._config.default_max_bytes if max_bytes is None else max_bytes

        async with self._client.stream(
            method, url, headers=headers, timeout=httpx.Timeout(timeout_s),
        ) as response:
            response_headers = {k.lower(): v for k, v in response.headers.items()}
            content_type = response_headers.get("content-type", "").lower()

            body = ""
            textual = content_type == "" or any(m in content_type for m in _TEXTUAL_MARKERS)
            if method != "HEAD" and textual and limit > 0:
                body = await _read_text(response, limit)

            return FetchResult(
                status=response.status_code,
                url=str(response.url),
                headers=response_headers,
                body=body,
                content_type=content_type,
            )


async def _read_text(response: httpx.Response, max_bytes: int) -> str:
    """Read at most ``max_bytes`` of the body and decode it leniently."""
    chunks: list[bytes] = []
    size = 0
    async for chunk in response.aiter_bytes():
        chunks.append(chunk)
        size += len(chunk)
        if size >= max_bytes:
            break
    raw = b"".join(chunks)[:max_bytes]
    encoding = response.charset_encoding or "utf-8"
    try:
        return raw.decode(encoding, errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


async def resolve_canonical_url(fetcher: Fetcher, raw_url: str) -> str:
    """Prefer the https variant of ``raw_url``; return the cleaned final URL.

    Falls back to the cleaned input when nothing is reachable.
    """
    cleaned = clean_url(raw_url)
    if not cleaned:
        return ""

    attempts = [cleaned]
    if cleaned.startswith("http://"):
        attempts.insert(0, "https://" + cleaned[len("http://"):])

    for index, candidate in enumerate(attempts):
        response = await fetcher.fetch_maybe(
            candidate, max_bytes=0, retries=1, timeout_ms=CANONICAL_TIMEOUT_MS,
        )
        if response is None:
            continue
        if response.status < 400 or index == len(attempts) - 1:
            return clean_url(response.url)
    return cleaned
