"""Jobs-URL discovery cascade.

Strategy order (first accepted candidate wins):
  1. Path probing: conventional career paths on the homepage origin
  2. Link-text crawl: homepage + up to 2 same-host context pages
  3. Browser crawl: rendered BFS over <= 3 pages, request sniffing
  4. Sitemap scan: /sitemap.xml <loc> entries
  5. Best held PDF candidate from any strategy
  6. Empty result flagged for manual review

PDF candidates are held, never accepted immediately. Fast mode runs only a
trimmed link-text crawl and a 3-path probe with zero retries.
"""

import logging
import re
from collections import deque
from collections.abc import Awaitable, Callable, Iterable

from src.browser.session import Renderer, extract_anchor_pairs
from src.core.schemas import Anchor, Candidate, DiscoveredVia, JobsDiscoveryResult, Origin
from src.core.text import keyword_hits, keyword_score, looks_like_pdf, normalize_whitespace
from src.discovery.classifier import is_known_ats_url
from src.discovery.extract import anchors_from_pairs, extract_anchors
from src.net.http import Fetcher
from src.net.urls import clean_url, origin, same_host

logger = logging.getLogger(__name__)

COMMON_PATHS: tuple[str, ...] = (
    "/careers",
    "/career",
    "/jobs",
    "/job",
    "/employment",
    "/work-with-us",
    "/opportunities",
    "/about/careers",
    "/about/jobs",
    "/join-our-team",
    "/join-us",
    "/human-resources",
    "/hr",
)
FAST_PATHS: tuple[str, ...] = ("/careers", "/jobs", "/employment")

CAREER_KEYWORDS = ("career", "careers", "jobs", "employment", "opportunities", "apply")
LINK_KEYWORDS = (
    "careers",
    "jobs",
    "employment",
    "recruitment",
    "opportunities",
    "join our team",
    "work with us",
)

# Scores. Empirically tuned; candidates for recalibration.
ATS_SCORE = 100.0
KEYWORD_PAGE_SCORE = 80.0
PROBE_PDF_SCORE = 10.0
LINK_ATS_BONUS = 40.0
SITEMAP_BASE_SCORE = 20.0
SITEMAP_EXACT_BONUS = 10.0
SITEMAP_ATS_BONUS = 30.0
MIN_PAGE_KEYWORDS = 2

MAX_CONTEXT_PAGES = 2
MAX_CONTEXT_SCAN = 8
MAX_BROWSER_PAGES = 3

PROBE_MAX_BYTES = 750_000
CRAWL_MAX_BYTES = 1_500_000
SITEMAP_MAX_BYTES = 3_000_000
FAST_CRAWL_MAX_BYTES = 700_000
FAST_PROBE_MAX_BYTES = 400_000
FAST_TIMEOUT_MS = 8000

NOTE_NO_HOMEPAGE = "Homepage missing; manual review required."
NOTE_PDF = "PDF careers source detected."
NOTE_NOT_FOUND = "No reliable jobs URL discovered automatically."

_CONTEXT_PAGE = re.compile(r"about|contact|government|city hall|town hall|administration")
_SITEMAP_LOC = re.compile(r"<loc>([^<]+)</loc>", re.IGNORECASE)
_SITEMAP_RELEVANT = re.compile(r"career|job|employ|opportunit|recruit")
_SITEMAP_EXACT = re.compile(r"career|jobs")

Strategy = Callable[[], Awaitable[Candidate | None]]


def pick_highest(candidates: Iterable[Candidate]) -> Candidate | None:
    """Highest score wins; ties go to the earliest discovered."""
    best: Candidate | None = None
    for candidate in candidates:
        if best is None or candidate.score > best.score:
            best = candidate
    return best


def best_candidate(candidates: list[Candidate]) -> Candidate | None:
    """Best non-document candidate, else the best document (to be held)."""
    pages = [c for c in candidates if not c.is_document]
    return pick_highest(pages) or pick_highest(candidates)


async def first_accepted(strategies: Iterable[Strategy], held: list[Candidate]) -> Candidate | None:
    """Run strategies in order and return the first non-document candidate.

    Document (PDF) candidates are appended to ``held`` and the cascade continues.
    """
    for strategy in strategies:
        candidate = await strategy()
        if candidate is None:
            continue
        if candidate.is_document:
            held.append(candidate)
            continue
        return candidate
    return None


def score_link_text(text: str) -> int:
    return keyword_score(text, LINK_KEYWORDS)


def likely_context_page(text: str) -> bool:
    return bool(_CONTEXT_PAGE.search(text.lower()))


def score_anchors(anchors: Iterable[Anchor], source: Origin) -> list[Candidate]:
    """Score anchors by link text; known-ATS targets get a fixed bonus."""
    candidates: list[Candidate] = []
    for anchor in anchors:
        if not anchor.text:
            continue
        score = score_link_text(anchor.text)
        if score <= 0:
            continue
        is_pdf = looks_like_pdf(anchor.url)
        bonus = LINK_ATS_BONUS if is_known_ats_url(anchor.url) else 0.0
        candidates.append(Candidate(
            url=anchor.url,
            score=score + bonus,
            origin=Origin.PDF if is_pdf else source,
            is_document=is_pdf,
        ))
    return candidates


def context_page_urls(anchors: Iterable[Anchor], page_url: str, limit: int = MAX_CONTEXT_PAGES) -> list[str]:
    """Same-host "about/contact/administration" pages, de-duplicated, order kept."""
    found: list[str] = []
    scanned = 0
    for anchor in anchors:
        if scanned >= MAX_CONTEXT_SCAN:
            break
        if not likely_context_page(anchor.text) or not same_host(anchor.url, page_url):
            continue
        scanned += 1
        if anchor.url not in found:
            found.append(anchor.url)
    return found[:limit]


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


async def path_probe(
    homepage_url: str,
    fetcher: Fetcher,
    paths: Iterable[str] = COMMON_PATHS,
    *,
    retries: int = 1,
    max_bytes: int = PROBE_MAX_BYTES,
    timeout_ms: int | None = None,
) -> Candidate | None:
    """Probe conventional career paths on the homepage origin.

    Returns a known-ATS redirect (100) or a keyword-backed page (80) at once;
    otherwise the first PDF seen (10), or None.
    """
    base = origin(clean_url(homepage_url))
    if not base:
        return None

    pdf_candidate: Candidate | None = None
    for path in paths:
        response = await fetcher.fetch_maybe(
            clean_url(f"{base}{path}"),
            max_bytes=max_bytes, retries=retries, timeout_ms=timeout_ms,
        )
        if response is None:
            continue

        final_url = clean_url(response.url)
        if is_known_ats_url(final_url):
            return Candidate(url=final_url, score=ATS_SCORE, origin=Origin.PATH_GUESS)

        if looks_like_pdf(final_url) or "pdf" in response.content_type:
            if pdf_candidate is None:
                pdf_candidate = Candidate(
                    url=final_url, score=PROBE_PDF_SCORE, origin=Origin.PDF, is_document=True,
                )
            continue

        if response.status == 200 and keyword_hits(response.body, CAREER_KEYWORDS) >= MIN_PAGE_KEYWORDS:
            return Candidate(url=final_url, score=KEYWORD_PAGE_SCORE, origin=Origin.PATH_GUESS)

    return pdf_candidate


async def link_text_crawl(
    homepage_url: str,
    fetcher: Fetcher,
    *,
    include_context_pages: bool = True,
    retries: int = 1,
    max_bytes: int = CRAWL_MAX_BYTES,
    timeout_ms: int | None = None,
) -> Candidate | None:
    """Score every anchor on the homepage (and up to 2 context pages) by link text."""
    homepage = await fetcher.fetch_maybe(
        homepage_url, max_bytes=max_bytes, retries=retries, timeout_ms=timeout_ms,
    )
    if homepage is None or homepage.status >= 400 or not homepage.body:
        return None

    home_url = clean_url(homepage.url)
    home_anchors = extract_anchors(homepage.body, home_url)
    candidates = score_anchors(home_anchors, Origin.LINK_TEXT)

    if include_context_pages:
        for page_url in context_page_urls(home_anchors, home_url):
            if page_url == home_url:
                continue
            response = await fetcher.fetch_maybe(
                page_url, max_bytes=max_bytes, retries=retries, timeout_ms=timeout_ms,
            )
            if response is None or response.status >= 400:
                continue
            anchors = extract_anchors(response.body, clean_url(response.url))
            candidates.extend(score_anchors(anchors, Origin.LINK_TEXT))

    return best_candidate(candidates)


async def browser_crawl(
    homepage_url: str,
    renderer: Renderer,
    *,
    max_pages: int = MAX_BROWSER_PAGES,
) -> Candidate | None:
    """Breadth-first rendered crawl from the homepage, bounded to ``max_pages``.

    Anchors are scored like the link-text crawl; any sub-resource request that
    matches the vendor table is a maximal-score candidate.
    """
    queue: deque[str] = deque([clean_url(homepage_url)])
    visited: set[str] = set()
    candidates: list[Candidate] = []

    while queue and len(visited) < max_pages:
        url = queue.popleft()
        if url in visited:
            continue
        visited.add(url)

        try:
            page = await renderer.render(url, extract=extract_anchor_pairs)
        except Exception:
            logger.debug("Renderer raised for %s", url, exc_info=True)
            continue
        if page is None:
            continue

        for request_url in page.request_urls:
            if is_known_ats_url(request_url):
                candidates.append(Candidate(
                    url=clean_url(request_url), score=ATS_SCORE, origin=Origin.BROWSER_CRAWL,
                ))

        page_url = clean_url(page.final_url)
        if isinstance(page.extracted, list):
            anchors = anchors_from_pairs(page.extracted, page_url)
        else:
            anchors = extract_anchors(page.html, page_url)
        candidates.extend(score_anchors(anchors, Origin.BROWSER_CRAWL))

        for context_url in context_page_urls(anchors, page_url):
            if context_url not in visited and context_url not in queue:
                queue.append(context_url)

    return best_candidate(candidates)


async def sitemap_scan(homepage_url: str, fetcher: Fetcher) -> Candidate | None:
    """Pick the best career-looking ``<loc>`` entry of ``/sitemap.xml``."""
    base = origin(clean_url(homepage_url))
    if not base:
        return None

    response = await fetcher.fetch_maybe(
        f"{base}/sitemap.xml",
        max_bytes=SITEMAP_MAX_BYTES,
        retries=1,
        headers={"Accept": "application/xml,text/xml,text/plain,*/*"},
    )
    if response is None or response.status >= 400 or not response.body:
        return None

    matched: list[Candidate] = []
    for raw in _SITEMAP_LOC.findall(response.body):
        url = clean_url(normalize_whitespace(raw))
        lower = url.lower()
        if not _SITEMAP_RELEVANT.search(lower):
            continue

        score = SITEMAP_BASE_SCORE
        if _SITEMAP_EXACT.search(lower):
            score += SITEMAP_EXACT_BONUS
        if is_known_ats_url(url):
            score += SITEMAP_ATS_BONUS

        is_pdf = looks_like_pdf(url)
        matched.append(Candidate(
            url=url,
            score=score,
            origin=Origin.PDF if is_pdf else Origin.SITEMAP,
            is_document=is_pdf,
        ))

    return best_candidate(matched)


# ---------------------------------------------------------------------------
# Cascade
# ---------------------------------------------------------------------------


def _accepted(candidate: Candidate) -> JobsDiscoveryResult:
    return JobsDiscoveryResult(
        jobs_url=candidate.url,
        discovered_via=DiscoveredVia(candidate.origin.value),
    )


def _from_held(held: list[Candidate]) -> JobsDiscoveryResult:
    pdf = pick_highest(held)
    if pdf is not None:
        return JobsDiscoveryResult(jobs_url=pdf.url, discovered_via=DiscoveredVia.PDF, notes=NOTE_PDF)
    return JobsDiscoveryResult(discovered_via=DiscoveredVia.MANUAL, notes=NOTE_NOT_FOUND)


async def discover_jobs_url(
    homepage_url: str,
    fetcher: Fetcher,
    renderer: Renderer | None = None,
    *,
    fast: bool = False,
    fast_timeout_ms: int = FAST_TIMEOUT_MS,
) -> JobsDiscoveryResult:
    """Find the jobs URL for a homepage. Never raises; empty url means manual review."""
    homepage_url = clean_url(homepage_url)
    if not homepage_url:
        return JobsDiscoveryResult(discovered_via=DiscoveredVia.MANUAL, notes=NOTE_NO_HOMEPAGE)

    strategies: list[Strategy]
    if fast:
        strategies = [
            lambda: link_text_crawl(
                homepage_url, fetcher,
                include_context_pages=False, retries=0,
                max_bytes=FAST_CRAWL_MAX_BYTES, timeout_ms=fast_timeout_ms,
            ),
            lambda: path_probe(
                homepage_url, fetcher, FAST_PATHS, retries=0,
                max_bytes=FAST_PROBE_MAX_BYTES, timeout_ms=fast_timeout_ms,
            ),
        ]
    else:
        strategies = [
            lambda: path_probe(homepage_url, fetcher),
            lambda: link_text_crawl(homepage_url, fetcher),
        ]
        if renderer is not None:
            strategies.append(lambda: browser_crawl(homepage_url, renderer))
        strategies.append(lambda: sitemap_scan(homepage_url, fetcher))

    held: list[Candidate] = []
    accepted = await first_accepted(strategies, held)
    if accepted is not None:
        logger.debug("Jobs URL for %s via %s: %s", homepage_url, accepted.origin.value, accepted.url)
        return _accepted(accepted)

    result = _from_held(held)
    logger.debug("No page-type jobs URL for %s (%s)", homepage_url, result.notes)
    return result
