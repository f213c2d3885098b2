"""Tests for the rate-limited HTTP client (httpx.MockTransport, no network)."""

import asyncio
from collections.abc import Callable

import httpx
import pytest

from src.core.config import HttpConfig
from src.net.http import (
    FetchError,
    Fetcher,
    HostRateLimiter,
    HttpClient,
    backoff_delay,
    is_retryable_status,
    resolve_canonical_url,
)

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("src.net.http.backoff_delay", lambda attempt: 0.0)


def make_client(handler: Handler, **overrides: int) -> HttpClient:
    config = HttpConfig(host_interval_ms=0, **overrides)
    return HttpClient(config, transport=httpx.MockTransport(handler))


def html(body: str, status: int = 200) -> httpx.Response:
    return httpx.Response(status, text=body, headers={"Content-Type": "text/html; charset=utf-8"})


class TestHelpers:
    @pytest.mark.parametrize("status", [408, 429, 500, 503])
    def test_retryable(self, status: int) -> None:
        assert is_retryable_status(status)

    @pytest.mark.parametrize("status", [200, 301, 403, 404])
    def test_not_retryable(self, status: int) -> None:
        assert not is_retryable_status(status)

    def test_backoff_grows_with_jitter(self) -> None:
        assert 0.5 <= backoff_delay(0) <= 0.7
        assert 2.0 <= backoff_delay(2) <= 2.2

    def test_client_satisfies_protocol(self) -> None:
        assert isinstance(make_client(lambda r: html("")), Fetcher)


class TestFetch:
    async def test_follows_redirects(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"Location": "/new/?utm_source=x"})
            return html("<p>hello</p>")

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/old")
        assert result.status == 200
        assert result.url == "https://a.ca/new"
        assert result.body == "<p>hello</p>"

    async def test_303_switches_to_get(self) -> None:
        methods: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            methods.append(request.method)
            if request.url.path == "/submit":
                return httpx.Response(303, headers={"Location": "/done"})
            return html("ok")

        async with make_client(handler) as client:
            await client.fetch("https://a.ca/submit", method="POST")
        assert methods == ["POST", "GET"]

    async def test_too_many_redirects(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"Location": "/loop"})

        async with make_client(handler, max_redirects=2) as client:
            with pytest.raises(FetchError):
                await client.fetch("https://a.ca/loop", retries=0)

    async def test_retries_then_succeeds(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return html("busy", 503) if calls < 3 else html("ok")

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/", retries=2)
        assert result.status == 200
        assert calls == 3

    async def test_retries_are_bounded(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return html("busy", 503)

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/", retries=1)
        assert result.status == 503
        assert calls == 2

    async def test_404_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return html("missing", 404)

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/x", retries=3)
        assert result.status == 404
        assert calls == 1

    async def test_transport_error_raises_after_retries(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("down", request=request)

        async with make_client(handler) as client:
            with pytest.raises(FetchError, match="Request failed"):
                await client.fetch("https://a.ca/", retries=2)
        assert calls == 3

    async def test_fetch_maybe_returns_none(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        async with make_client(handler) as client:
            assert await client.fetch_maybe("https://a.ca/", retries=0) is None

    async def test_body_truncated(self) -> None:
        async with make_client(lambda r: html("x" * 5000)) as client:
            result = await client.fetch("https://a.ca/", max_bytes=10)
        assert result.body == "x" * 10

    async def test_binary_body_not_read(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF-1.4", headers={"Content-Type": "application/pdf"})

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/jobs.pdf")
        assert result.body == ""
        assert result.content_type == "application/pdf"

    async def test_head_has_no_body(self) -> None:
        async with make_client(lambda r: html("ignored")) as client:
            result = await client.fetch("https://a.ca/", method="HEAD")
        assert result.body == ""

    async def test_headers_lowercased(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="", headers={"X-Custom": "1", "Content-Type": "text/plain"})

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/")
        assert result.headers["x-custom"] == "1"

    async def test_malformed_url(self) -> None:
        async with make_client(lambda r: html("")) as client:
            assert await client.fetch_maybe("https://", retries=0) is None

    async def test_invalid_idna_host(self) -> None:
        async with make_client(lambda r: html("")) as client:
            assert await client.fetch_maybe("https://xn--.ca/") is None

    async def test_control_character_in_host(self) -> None:
        async with make_client(lambda r: html("")) as client:
            assert await client.fetch_maybe("https://a\x00b.ca/") is None

    async def test_redirect_to_invalid_host_is_not_retried(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(302, headers={"Location": "https://xn--.ca/jobs"})

        async with make_client(handler) as client:
            with pytest.raises(FetchError, match="Invalid URL"):
                await client.fetch("https://town.ca/careers", retries=3)
        assert seen == ["https://town.ca/careers"]

    async def test_content_type_lowercased(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"%PDF-1.4", headers={"Content-Type": "Application/PDF"})

        async with make_client(handler) as client:
            result = await client.fetch("https://a.ca/postings")
        assert result.content_type == "application/pdf"


class TestCanonicalUrl:
    async def test_prefers_https(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return html("")

        async with make_client(handler) as client:
            assert await resolve_canonical_url(client, "http://a.ca") == "https://a.ca/"
        assert seen == ["https://a.ca/"]

    async def test_falls_back_to_http(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.scheme == "https":
                raise httpx.ConnectError("no tls", request=request)
            return html("")

        async with make_client(handler) as client:
            assert await resolve_canonical_url(client, "http://a.ca/") == "http://a.ca/"

    async def test_unreachable_returns_cleaned_input(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("down", request=request)

        async with make_client(handler) as client:
            assert await resolve_canonical_url(client, "a.ca/?utm_source=x") == "https://a.ca/"


class TestHostRateLimiter:
    async def test_one_in_flight_per_host(self) -> None:
        limiter = HostRateLimiter(0.0)
        active = 0
        peak = 0

        async def task() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(*(limiter.run("a.ca", task) for _ in range(4)))
        assert peak == 1

    async def test_hosts_independent(self) -> None:
        limiter = HostRateLimiter(0.0)
        active = 0
        peak = 0

        async def task() -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        await asyncio.gather(limiter.run("a.ca", task), limiter.run("b.ca", task))
        assert peak == 2

    async def test_spacing(self) -> None:
        limiter = HostRateLimiter(0.05)
        starts: list[float] = []
        loop = asyncio.get_running_loop()

        async def task() -> None:
            starts.append(loop.time())

        await asyncio.gather(limiter.run("a.ca", task), limiter.run("a.ca", task))
        assert starts[1] - starts[0] >= 0.04

    async def test_state_kept_per_host(self) -> None:
        limiter = HostRateLimiter(0.0)

        async def task() -> None:
            return None

        for host in ("a.ca", "b.ca", "a.ca"):
            await limiter.run(host, task)
        assert sorted(limiter._locks) == ["a.ca", "b.ca"]
        assert sorted(limiter._next_allowed) == ["a.ca", "b.ca"]
