"""Text helpers shared by discovery, research and classification.

Pure functions, no network access.
"""

import re
from collections.abc import Iterable

_WS = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_ENTITY_TERMS = re.compile(r"\b(first nation|first nations|indian band|nation|band)\b")
_PDF_URL = re.compile(r"\.pdf($|[?#])", re.IGNORECASE)


def normalize_whitespace(value: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return _WS.sub(" ", value or "").strip()


def normalize_for_match(value: str) -> str:
    """Lower-case, drop generic entity words and punctuation.

    "Example First Nation" and "EXAMPLE band" both normalize to "example".
    """
    lowered = normalize_whitespace(value).lower()
    lowered = _ENTITY_TERMS.sub(" ", lowered)
    lowered = _NON_ALNUM.sub(" ", lowered)
    return normalize_whitespace(lowered)


def slugify(value: str, max_length: int = 48) -> str:
    slug = _NON_ALNUM.sub("-", normalize_whitespace(value).lower()).strip("-")
    return slug[:max_length]


def _bigrams(value: str) -> set[str]:
    padded = f" {value} "
    return {padded[i:i + 2] for i in range(len(padded) - 1)}


def dice_similarity(a: str, b: str) -> float:
    """Sørensen–Dice coefficient over character bigrams of match-normalized names.

    Returns a value in [0, 1]; identical normalized names score 1.0.
    """
    a_norm = normalize_for_match(a)
    b_norm = normalize_for_match(b)
    if not a_norm or not b_norm:
        return 0.0
    if a_norm == b_norm:
        return 1.0

    a_grams = _bigrams(a_norm)
    b_grams = _bigrams(b_norm)
    overlap = len(a_grams & b_grams)
    return (2 * overlap) / (len(a_grams) + len(b_grams))


def looks_like_pdf(url: str) -> bool:
    return bool(_PDF_URL.search(url or ""))


def keyword_score(text: str, keywords: Iterable[str]) -> int:
    """Sum the word counts of every keyword found as a substring of ``text``.

    Multi-word keywords ("join our team") score higher than single words.
    """
    lower = (text or "").lower()
    return sum(len(kw.split(" ")) for kw in keywords if kw in lower)


def keyword_hits(text: str, keywords: Iterable[str]) -> int:
    """Count how many distinct keywords occur in ``text`` (case-insensitive)."""
    lower = (text or "").lower()
    return sum(1 for kw in keywords if kw in lower)
