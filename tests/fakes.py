"""In-memory doubles for the fetcher and renderer (no network)."""

from typing import Any

from src.browser.session import PageCallback, RenderedPage
from src.core.schemas import FetchResult
from src.net.http import FetchError
from src.net.urls import clean_url


class FakeFetcher:
    """Routes cleaned URL -> canned FetchResult and records every call.

    Unrouted URLs behave like a network failure.
    """

    def __init__(self) -> None:
        self.routes: dict[str, FetchResult] = {}
        self.calls: list[str] = []
        self.call_kwargs: list[dict[str, Any]] = []

    def add(
        self,
        url: str,
        body: str = "",
        *,
        status: int = 200,
        content_type: str = "text/html; charset=utf-8",
        final_url: str | None = None,
    ) -> "FakeFetcher":
        self.routes[clean_url(url)] = FetchResult(
            status=status,
            url=clean_url(final_url or url),
            headers={"content-type": content_type},
            body=body,
            content_type=content_type,
        )
        return self

    def count(self, fragment: str) -> int:
        """Number of recorded calls whose URL contains ``fragment``."""
        return sum(1 for url in self.calls if fragment in url)

    async def fetch(self, url: str, **kwargs: Any) -> FetchResult:
        key = clean_url(url)
        self.calls.append(key)
        self.call_kwargs.append(kwargs)
        response = self.routes.get(key)
        if response is None:
            msg = f"Failed to fetch {key}: no route"
            raise FetchError(msg)
        return response

    async def fetch_maybe(self, url: str, **kwargs: Any) -> FetchResult | None:
        try:
            return await self.fetch(url, **kwargs)
        except FetchError:
            return None


class FakeRenderer:
    """Returns canned RenderedPages; unrouted URLs fail navigation (None)."""

    def __init__(self) -> None:
        self.pages: dict[str, RenderedPage] = {}
        self.calls: list[str] = []

    def add(
        self,
        url: str,
        html: str = "",
        *,
        final_url: str | None = None,
        request_urls: list[str] | None = None,
        anchors: list[tuple[str, str]] | None = None,
    ) -> "FakeRenderer":
        self.pages[clean_url(url)] = RenderedPage(
            final_url=final_url or url,
            html=html,
            request_urls=request_urls or [],
            extracted=anchors,
        )
        return self

    async def render(self, url: str, extract: PageCallback | None = None) -> RenderedPage | None:
        self.calls.append(clean_url(url))
        return self.pages.get(clean_url(url))


