"""Headless rendering using patchright (the engine's optional Renderer).

Rules:
  - Single browser + context per run, one fresh page per render
  - Navigation failures are non-fatal: render() returns None
  - The network-idle wait has its own shorter timeout; if it expires we
    proceed with whatever DOM is available
"""

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

from patchright.async_api import Browser, BrowserContext, Playwright, async_playwright
from pydantic import BaseModel, ConfigDict, Field

from src.core.config import BrowserConfig

logger = logging.getLogger(__name__)

PageCallback = Callable[[Any], Awaitable[Any]]

# Collects rendered anchors as [text, absolute href] pairs.
ANCHORS_SCRIPT = (
    "els => els.map(e => [(e.innerText || e.textContent || '').trim(), e.href || ''])"
)


class RenderedPage(BaseModel):
    """Snapshot of a page after rendering."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    final_url: str
    html: str = ""
    request_urls: list[str] = Field(default_factory=list)
    extracted: Any = None


@runtime_checkable
class Renderer(Protocol):
    """What the engine needs from a headless browser."""

    async def render(self, url: str, extract: PageCallback | None = None) -> RenderedPage | None: ...


async def extract_anchor_pairs(page: Any) -> list[tuple[str, str]]:
    """Page callback returning ``(text, href)`` for every rendered ``a[href]``."""
    pairs = await page.eval_on_selector_all("a[href]", ANCHORS_SCRIPT)
    return [(str(text), str(href)) for text, href in pairs or []]


class BrowserSession:
    """Async context manager that owns one patchright browser + context.

    Usage::

        async with BrowserSession(config) as session:
            rendered = await session.render("https://...")
    """

    def __init__(self, config: BrowserConfig) -> None:
        self._config = config
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

    @property
    def context(self) -> BrowserContext:
        """The browser context for this session. Raises if not entered."""
        if self._context is None:
            msg = "BrowserSession not entered — use 'async with'"
            raise RuntimeError(msg)
        return self._context

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        self._browser = await pw.chromium.launch(headless=self._config.headless)
        self._context = await self._browser.new_context()
        self._context.set_default_timeout(self._config.navigation_timeout_ms)
        logger.debug("Browser session started (headless=%s)", self._config.headless)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def render(self, url: str, extract: PageCallback | None = None) -> RenderedPage | None:
        """Navigate to ``url`` and return the rendered DOM plus observed requests.

        Returns None if navigation itself fails.
        """
        page = await self.context.new_page()
        request_urls: list[str] = []
        page.on("request", lambda request: request_urls.append(request.url))

        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self._config.navigation_timeout_ms,
            )
            await _wait_for_idle(page, self._config.idle_timeout_ms)

            extracted = None
            if extract is not None:
                try:
                    extracted = await extract(page)
                except Exception:
                    logger.debug("Page callback failed on %s", url, exc_info=True)

            return RenderedPage(
                final_url=page.url,
                html=await page.content(),
                request_urls=list(request_urls),
                extracted=extracted,
            )
        except Exception as e:
            logger.debug("Render failed for %s: %s", url, e)
            return None
        finally:
            await page.close()


async def _wait_for_idle(page: Any, timeout_ms: int) -> None:
    """Wait for network quiescence. Some pages never settle; that is fine."""
    if timeout_ms <= 0:
        return
    try:
        await page.wait_for_load_state("networkidle", timeout=timeout_ms)
    except Exception:
        logger.debug("Network idle wait timed out after %d ms", timeout_ms)
