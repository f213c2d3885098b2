"""ATS classifier: which platform serves a jobs page.

Evaluation order (first match wins):
  1. Vendor URL table against the input URL            -> confidence 1.0, no fetch
  2. Fetch; vendor URL table against the final URL     -> 1.0
  3. Vendor content markers in final URL + body        -> 1.0
  4. Shape heuristics: pdf (0.5), html_list (0.8), generic careers page (0.5)
  5. With a renderer: 2-4 again on the rendered DOM and observed requests
  6. Terminal fallback: unknown / generic_dom (0.5)

Never raises: unreachable or malformed input ends at step 6.
"""

import logging
import re
from dataclasses import dataclass

from src.browser.session import Renderer
from src.core.schemas import AdapterId, ClassificationResult, JobsSourceType
from src.core.text import keyword_hits, looks_like_pdf
from src.discovery.extract import page_text, parse_html
from src.net.http import Fetcher

logger = logging.getLogger(__name__)

CONFIDENCE_ATS = 1.0
CONFIDENCE_HTML_LIST = 0.8
CONFIDENCE_PDF = 0.5
CONFIDENCE_GENERIC = 0.5

CLASSIFY_MAX_BYTES = 1_000_000
CLASSIFY_RETRIES = 2

MIN_RELEVANT_LINKS = 3
MIN_RELEVANT_LINKS_WITH_KEYWORDS = 2
MIN_LIST_KEYWORDS = 3
MIN_POSTING_MARKERS = 3
MIN_NETWORK_HINTS = 3
MIN_CAREER_KEYWORDS = 2


@dataclass(frozen=True)
class VendorSignature:
    """One row of the vendor table: a pattern paired with exactly one identity."""

    pattern: re.Pattern[str]
    jobs_source_type: JobsSourceType
    adapter_id: AdapterId

    def result(self) -> ClassificationResult:
        return ClassificationResult(
            jobs_source_type=self.jobs_source_type,
            adapter_id=self.adapter_id,
            confidence=CONFIDENCE_ATS,
        )


def _sig(pattern: str, jobs_source_type: JobsSourceType, adapter_id: AdapterId) -> VendorSignature:
    return VendorSignature(re.compile(pattern, re.IGNORECASE), jobs_source_type, adapter_id)


# URL signatures, anchored to hostnames or vendor-specific path segments.
VENDOR_URL_SIGNATURES: tuple[VendorSignature, ...] = (
    _sig(r"myworkdayjobs\.com|/wday/cxs/", JobsSourceType.ATS_WORKDAY, AdapterId.WORKDAY),
    _sig(r"taleo\.net|/careersection/", JobsSourceType.ATS_TALEO, AdapterId.TALEO),
    _sig(r"icims\.com", JobsSourceType.ATS_ICIMS, AdapterId.ICIMS),
    _sig(r"governmentjobs\.com|neogov\.com", JobsSourceType.ATS_NEOGOV, AdapterId.NEOGOV),
    _sig(r"dayforcehcm\.com", JobsSourceType.ATS_DAYFORCE, AdapterId.DAYFORCE),
    _sig(r"bamboohr\.com/jobs/", JobsSourceType.ATS_BAMBOOHR, AdapterId.BAMBOOHR),
    _sig(r"paycomonline\.net", JobsSourceType.ATS_PAYCOM, AdapterId.PAYCOM),
)

# Looser vendor identifiers for embedded widgets and iframes.
VENDOR_CONTENT_MARKERS: tuple[VendorSignature, ...] = (
    _sig(r"workday", JobsSourceType.ATS_WORKDAY, AdapterId.WORKDAY),
    _sig(r"icims", JobsSourceType.ATS_ICIMS, AdapterId.ICIMS),
    _sig(r"taleo", JobsSourceType.ATS_TALEO, AdapterId.TALEO),
    _sig(r"neogov|governmentjobs", JobsSourceType.ATS_NEOGOV, AdapterId.NEOGOV),
    _sig(r"dayforce", JobsSourceType.ATS_DAYFORCE, AdapterId.DAYFORCE),
    _sig(r"bamboohr", JobsSourceType.ATS_BAMBOOHR, AdapterId.BAMBOOHR),
    _sig(r"paycom", JobsSourceType.ATS_PAYCOM, AdapterId.PAYCOM),
)

_LINK_TEXT_HINT = re.compile(r"job|career|position|apply|opportunit|posting|vacanc|requisition")
_LINK_HREF_HINT = re.compile(r"job|career|posting|apply|requisition")
_POSTING_MARKERS = re.compile(r"\b(closing date|apply now|job posting|vacancy|position title)\b")
_NETWORK_HINT = re.compile(r"jobs|posting|requisition|career|employment", re.IGNORECASE)

LIST_KEYWORDS = ("job", "career", "position", "vacancy", "posting", "apply", "requisition")
CAREER_PAGE_KEYWORDS = ("career", "careers", "jobs", "employment", "opportunities", "apply")


HTML_LIST_RESULT = ClassificationResult(
    jobs_source_type=JobsSourceType.HTML_LIST,
    adapter_id=AdapterId.HTML_LIST,
    confidence=CONFIDENCE_HTML_LIST,
)
PDF_RESULT = ClassificationResult(
    jobs_source_type=JobsSourceType.PDF,
    adapter_id=AdapterId.PDF,
    confidence=CONFIDENCE_PDF,
)
GENERIC_RESULT = ClassificationResult(
    jobs_source_type=JobsSourceType.UNKNOWN,
    adapter_id=AdapterId.GENERIC_DOM,
    confidence=CONFIDENCE_GENERIC,
)
MANUAL_RESULT = ClassificationResult(
    jobs_source_type=JobsSourceType.MANUAL_REVIEW,
    adapter_id=AdapterId.MANUAL,
    confidence=0.0,
)


def _first_match(value: str, table: tuple[VendorSignature, ...]) -> ClassificationResult | None:
    for signature in table:
        if signature.pattern.search(value):
            return signature.result()
    return None


def classify_url(url: str) -> ClassificationResult | None:
    """Match a URL against the vendor URL table. Pure; no network."""
    if not url:
        return None
    return _first_match(url, VENDOR_URL_SIGNATURES)


def classify_content(value: str) -> ClassificationResult | None:
    """Match vendor identifiers anywhere in ``value`` (URL + body, requests...)."""
    if not value:
        return None
    return _first_match(value, VENDOR_CONTENT_MARKERS)


def is_known_ats_url(url: str) -> bool:
    return classify_url(url) is not None


def looks_like_html_list(html: str) -> bool:
    """Heuristic: does the page look like a structured list of job postings?"""
    soup = parse_html(html)
    links = soup.find_all("a", href=True)
    if not links:
        return False

    relevant_links = 0
    for link in links:
        text = link.get_text(" ", strip=True).lower()
        href = str(link.get("href", "")).lower()
        if _LINK_TEXT_HINT.search(text) or _LINK_HREF_HINT.search(href):
            relevant_links += 1

    body = page_text(html).lower()
    list_keywords = keyword_hits(body, LIST_KEYWORDS)
    posting_markers = len(_POSTING_MARKERS.findall(body))

    return (
        relevant_links >= MIN_RELEVANT_LINKS
        or (relevant_links >= MIN_RELEVANT_LINKS_WITH_KEYWORDS and list_keywords >= MIN_LIST_KEYWORDS)
        or posting_markers >= MIN_POSTING_MARKERS
    )


def looks_generic_careers_page(html: str) -> bool:
    return keyword_hits(html, CAREER_PAGE_KEYWORDS) >= MIN_CAREER_KEYWORDS


def classify_page_shape(html: str, network_hints: int = 0) -> ClassificationResult | None:
    """Shape heuristics for a fetched or rendered document."""
    if network_hints >= MIN_NETWORK_HINTS or looks_like_html_list(html):
        return HTML_LIST_RESULT
    if looks_generic_careers_page(html):
        return GENERIC_RESULT
    return None


async def classify_jobs_source(
    jobs_url: str,
    fetcher: Fetcher,
    renderer: Renderer | None = None,
) -> ClassificationResult:
    """Classify the platform behind ``jobs_url``. Never raises."""
    direct = classify_url(jobs_url)
    if direct is not None:
        return direct

    response = await fetcher.fetch_maybe(
        jobs_url, max_bytes=CLASSIFY_MAX_BYTES, retries=CLASSIFY_RETRIES,
    )
    if response is not None:
        by_final_url = classify_url(response.url)
        if by_final_url is not None:
            return by_final_url

        by_marker = classify_content(f"{response.url}\n{response.body}")
        if by_marker is not None:
            return by_marker

        if looks_like_pdf(response.url) or "pdf" in response.content_type:
            return PDF_RESULT

        by_shape = classify_page_shape(response.body)
        if by_shape is not None:
            return by_shape
    elif renderer is None:
        logger.debug("Fetch failed for %s and no renderer — generic fallback", jobs_url)
        return GENERIC_RESULT

    if renderer is not None:
        rendered = await _classify_rendered(jobs_url, renderer)
        if rendered is not None:
            return rendered

    return GENERIC_RESULT


async def _classify_rendered(jobs_url: str, renderer: Renderer) -> ClassificationResult | None:
    try:
        page = await renderer.render(jobs_url)
    except Exception:
        logger.debug("Renderer raised for %s", jobs_url, exc_info=True)
        return None
    if page is None:
        return None

    by_final_url = classify_url(page.final_url)
    if by_final_url is not None:
        return by_final_url

    requests_blob = "\n".join(page.request_urls)
    by_marker = classify_content(f"{page.final_url}\n{page.html}\n{requests_blob}")
    if by_marker is not None:
        return by_marker

    if looks_like_pdf(page.final_url):
        return PDF_RESULT

    network_hints = sum(1 for url in page.request_urls if _NETWORK_HINT.search(url))
    return classify_page_shape(page.html, network_hints)
