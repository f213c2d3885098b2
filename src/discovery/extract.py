"""Candidate extraction primitives: HTML -> scored anchors.

Every strategy in the cascade, the research scorers and the classifier's
list-shape heuristic build on these helpers.
"""

import re
from collections.abc import Callable, Iterable

from bs4 import BeautifulSoup

from src.core.schemas import Anchor
from src.core.text import normalize_whitespace
from src.net.urls import clean_url, to_absolute_url

# Pages with thousands of links (site maps rendered as HTML, archives) are capped.
MAX_ANCHORS = 500
SNIPPET_CHARS = 160

AnchorPredicate = Callable[[str, str], bool]

_TITLE = re.compile(r"<title[^>]*>([^<]+)</title>", re.IGNORECASE)
_SKIP_SCHEMES = ("mailto:", "tel:", "javascript:", "data:")


def _accept_all(text: str, url: str) -> bool:
    return True


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _to_anchor(href: str, text: str, base_url: str, snippet: str = "") -> Anchor | None:
    href = (href or "").strip()
    if not href or href.startswith("#") or href.lower().startswith(_SKIP_SCHEMES):
        return None
    absolute = clean_url(to_absolute_url(href, base_url))
    if not absolute.startswith("http"):
        return None
    return Anchor(url=absolute, text=normalize_whitespace(text), snippet=snippet)


def extract_anchors(
    html: str,
    base_url: str,
    predicate: AnchorPredicate | None = None,
    *,
    limit: int = MAX_ANCHORS,
) -> list[Anchor]:
    """Return anchors of ``html`` accepted by ``predicate(text, absolute_url)``.

    Relative hrefs are resolved against ``base_url``; fragments and tracking
    parameters are stripped. Document order is preserved and at most ``limit``
    anchors are returned.
    """
    accept = predicate or _accept_all
    soup = parse_html(html)
    anchors: list[Anchor] = []

    for element in soup.find_all("a", href=True):
        if len(anchors) >= limit:
            break
        text = element.get_text(" ", strip=True)
        parent = element.parent
        snippet = ""
        if parent is not None:
            snippet = normalize_whitespace(parent.get_text(" ", strip=True))[:SNIPPET_CHARS]
        anchor = _to_anchor(str(element.get("href", "")), text, base_url, snippet)
        if anchor is None or not accept(anchor.text, anchor.url):
            continue
        anchors.append(anchor)

    return anchors


def anchors_from_pairs(
    pairs: Iterable[tuple[str, str]],
    base_url: str,
    predicate: AnchorPredicate | None = None,
    *,
    limit: int = MAX_ANCHORS,
) -> list[Anchor]:
    """Same contract as ``extract_anchors`` for ``(text, href)`` pairs read from a live DOM."""
    accept = predicate or _accept_all
    anchors: list[Anchor] = []
    for text, href in pairs:
        if len(anchors) >= limit:
            break
        anchor = _to_anchor(href, text, base_url)
        if anchor is None or not accept(anchor.text, anchor.url):
            continue
        anchors.append(anchor)
    return anchors


def page_text(html: str) -> str:
    """Visible-ish text of a document, whitespace-normalized."""
    soup = parse_html(html)
    for element in soup(["script", "style", "noscript"]):
        element.decompose()
    body = soup.body or soup
    return normalize_whitespace(body.get_text(" "))


def extract_title(html: str) -> str:
    match = _TITLE.search(html or "")
    return normalize_whitespace(match.group(1)) if match else ""
