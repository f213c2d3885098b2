"""Web-research fallback: knowledge graph + scraped search results.

Resolves a homepage when none is known, and a jobs URL when the cascade
comes back empty. Shared state lives in two injected collaborators owned by
the orchestrator:

  - ``SearchCache``: normalized query -> extracted candidate URLs, never
    invalidated. Writes are idempotent, so concurrent use is safe.
  - ``SearchCircuitBreaker``: one-way switch tripped by an anti-bot page.
    Once tripped, no further search request is issued; cached results
    remain usable.

Score thresholds below are empirically tuned and flagged for recalibration.
"""

import json
import logging
import re
from collections.abc import Iterable
from typing import Any
from urllib.parse import quote, urlencode

from src.core.config import ResearchConfig
from src.core.schemas import (
    Candidate,
    DiscoveredVia,
    FetchResult,
    OrgType,
    Origin,
    ResolutionResult,
)
from src.core.text import (
    dice_similarity,
    keyword_hits,
    looks_like_pdf,
    normalize_for_match,
    normalize_whitespace,
)
from src.discovery.classifier import is_known_ats_url
from src.discovery.extract import extract_title
from src.net.http import Fetcher
from src.net.urls import clean_url, host_path, hostname, origin, same_host

logger = logging.getLogger(__name__)

# --- Thresholds ---
MIN_ENTITY_SIMILARITY = 0.45
KNOWLEDGE_GRAPH_ACCEPT = 5.0
HOMEPAGE_EARLY_STOP = 9.0
HOMEPAGE_ACCEPT = 4.0
JOBS_EARLY_STOP = 12.0
JOBS_ACCEPT = 4.0
JOBS_ATS_SCORE = 100.0

# --- Homepage scoring weights ---
PAGE_TOKEN_WEIGHT = 2
HOST_TOKEN_WEIGHT = 3
OFFICIAL_BONUS = 1
DOMAIN_VOCAB_BONUS = 2
WRONG_SITE_PENALTY = 4
SIMILARITY_WEIGHT = 3.0
REGION_BONUS = 1.0

# --- Jobs scoring weights ---
JOBS_ATS_BONUS = 10
SAME_HOST_BONUS = 3
FOREIGN_HOST_PENALTY = 1
HOST_KEYWORD_WEIGHT = 2
PDF_BONUS = 4

MAX_ENTITIES = 6
MAX_WEBSITES_PER_ENTITY = 3
MAX_HOMEPAGE_CANDIDATES = 12
MAX_JOBS_CANDIDATES = 14

JSON_MAX_BYTES = 1_500_000
SEARCH_MAX_BYTES = 2_500_000
CANDIDATE_MAX_BYTES = 900_000
SEARCH_TIMEOUT_MS = 20000
CANDIDATE_TIMEOUT_MS = 15000

NOTE_KNOWLEDGE_GRAPH = "Homepage discovered via Wikidata fallback."
NOTE_HOMEPAGE_SEARCH = "Homepage discovered via web research fallback."
NOTE_JOBS_SEARCH = "Jobs URL discovered via web research fallback."

NAME_STOP_WORDS = frozenset({
    "and", "band", "city", "county", "de", "first", "for", "from", "indian", "la",
    "lake", "les", "nation", "nations", "of", "on", "ontario", "reserve", "the",
    "to", "town", "township", "village",
})

BLOCKED_HOST_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(rf"(^|\.){re.escape(domain)}$", re.IGNORECASE)
    for domain in (
        "aadnc-aandc.gc.ca",
        "rcaanc-cirnac.gc.ca",
        "canada.ca",
        "wikipedia.org",
        "wikidata.org",
        "youtube.com",
        "facebook.com",
        "instagram.com",
        "linkedin.com",
        "reddit.com",
        "msn.com",
        "x.com",
        "twitter.com",
        "search.brave.com",
        "bing.com",
        "duckduckgo.com",
    )
)

CAREER_TERMS = (
    "career", "careers", "jobs", "employment", "opportunities", "opportunity",
    "recruitment", "apply",
)

CHALLENGE_PHRASES = (
    "pow captcha",
    "our systems have detected unusual traffic",
    "unfortunately, bots use duckduckgo too",
    "please complete the following challenge",
)

_WEBSITE_URL = re.compile(r'website_url:"(https?://[^"]+)"')
_TITLE_URL = re.compile(r'title:"[^"]{1,260}",url:"(https?://[^"]+)"')
_OFFICIAL = re.compile(r"official website|welcome", re.IGNORECASE)
_FIRST_NATION_VOCAB = re.compile(
    r"first nation|band council|chief and council|anishinaab|indigenous|cree|mohawk|haudenosaunee",
    re.IGNORECASE,
)
_MUNICIPAL_VOCAB = re.compile(
    r"city|town|township|municipality|county|village|city hall|town hall", re.IGNORECASE,
)
_WRONG_SITE = re.compile(r"wikipedia|news|obituary|tripadvisor|booking|casino", re.IGNORECASE)
_FIRST_NATION_ENTITY = re.compile(r"first nation|indian reserve|indigenous|band|reserve|tribal", re.IGNORECASE)
_REGION_ENTITY = re.compile(
    r"\b(canada|ontario|manitoba|quebec|saskatchewan|alberta|british columbia)\b", re.IGNORECASE,
)
_ESCAPES = (
    (re.compile(r"\\u0026", re.IGNORECASE), "&"),
    (re.compile(r"\\u003d", re.IGNORECASE), "="),
    (re.compile(r"\\u002f", re.IGNORECASE), "/"),
    (re.compile(r"\\/"), "/"),
)


# ---------------------------------------------------------------------------
# Shared state
# ---------------------------------------------------------------------------


class SearchCache:
    """Process-lifetime map of normalized query -> candidate URLs."""

    def __init__(self) -> None:
        self._entries: dict[str, list[str]] = {}

    @staticmethod
    def key(query: str) -> str:
        return normalize_whitespace(query).lower()

    def get(self, query: str) -> list[str] | None:
        entry = self._entries.get(self.key(query))
        return None if entry is None else list(entry)

    def put(self, query: str, urls: list[str]) -> None:
        self._entries[self.key(query)] = list(urls)

    def __contains__(self, query: object) -> bool:
        return isinstance(query, str) and self.key(query) in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SearchCircuitBreaker:
    """Write-once flag: once tripped, search stays disabled for the process."""

    def __init__(self) -> None:
        self._tripped = False

    @property
    def tripped(self) -> bool:
        return self._tripped

    def trip(self) -> None:
        self._tripped = True


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def name_tokens(name: str) -> list[str]:
    """Distinguishing tokens of an organization name (>= 3 chars, no stop words)."""
    normalized = normalize_for_match(name)
    if not normalized:
        return []
    return [t for t in normalized.split(" ") if len(t) >= 3 and t not in NAME_STOP_WORDS]


def count_token_hits(text: str, tokens: Iterable[str]) -> int:
    return sum(1 for token in tokens if token in text)


def is_blocked_host(host: str) -> bool:
    return any(pattern.search(host) for pattern in BLOCKED_HOST_PATTERNS)


def decode_escaped(value: str) -> str:
    for pattern, replacement in _ESCAPES:
        value = pattern.sub(replacement, value)
    return value.strip()


def normalize_home_candidate(raw_url: str) -> str:
    """Reduce a search hit to its cleaned origin."""
    cleaned = clean_url(decode_escaped(raw_url))
    base = origin(cleaned)
    return clean_url(base) if base else cleaned


def unique_urls(urls: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    unique: list[str] = []
    for url in urls:
        cleaned = clean_url(url)
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        unique.append(cleaned)
    return unique


def extract_search_candidates(html: str) -> list[str]:
    """Pull result URLs out of the embedded data of a search results page."""
    found: list[str] = []
    for pattern in (_WEBSITE_URL, _TITLE_URL):
        for match in pattern.finditer(html or ""):
            url = clean_url(decode_escaped(match.group(1)))
            if url.startswith("http"):
                found.append(url)
    return unique_urls(found)


def looks_like_search_challenge(html: str) -> bool:
    lower = (html or "").lower()
    return any(phrase in lower for phrase in CHALLENGE_PHRASES)


def is_plausible_first_nation_entity(label: str, description: str) -> bool:
    return bool(_FIRST_NATION_ENTITY.search(f"{label} {description}"))


def is_in_region(description: str) -> bool:
    return bool(_REGION_ENTITY.search(description))


def official_website_urls(entity: dict[str, Any]) -> list[str]:
    """Official-website claims (P856): preferred rank first, deprecated dropped."""
    claims = (entity.get("claims") or {}).get("P856") or []
    preferred: list[str] = []
    normal: list[str] = []
    for claim in claims:
        if not isinstance(claim, dict):
            continue
        value = ((claim.get("mainsnak") or {}).get("datavalue") or {}).get("value")
        if not isinstance(value, str) or not re.match(r"^https?://", value, re.IGNORECASE):
            continue
        rank = claim.get("rank")
        if rank == "deprecated":
            continue
        if rank == "preferred":
            preferred.append(value)
        else:
            normal.append(value)
    return preferred + normal


def build_homepage_queries(org_name: str, org_type: OrgType, region: str) -> list[str]:
    if org_type == OrgType.FIRST_NATION:
        return [
            f"{org_name} first nation {region} official website",
            f'"{org_name}" first nation website',
            f"{org_name} {region} band council",
        ]
    return [
        f"{org_name} {region} municipality official website",
        f"{org_name} {region} city hall",
    ]


def build_jobs_queries(org_name: str, org_type: OrgType, homepage_url: str, region: str) -> list[str]:
    queries: list[str] = []
    host = hostname(homepage_url) if homepage_url else ""
    if host:
        queries += [
            f"site:{host} careers",
            f"site:{host} jobs",
            f"site:{host} employment opportunities",
        ]
    if org_type == OrgType.FIRST_NATION:
        queries += [
            f"{org_name} first nation jobs",
            f"{org_name} first nation employment opportunities",
        ]
    else:
        queries += [
            f"{org_name} {region} municipality jobs",
            f"{org_name} {region} careers",
        ]
    return queries


# ---------------------------------------------------------------------------
# Researcher
# ---------------------------------------------------------------------------


class WebResearcher:
    """Knowledge-graph and search-engine fallback for homepages and jobs URLs.

    Never raises for network or parse failures; returns None when unresolved.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        cache: SearchCache,
        breaker: SearchCircuitBreaker,
        config: ResearchConfig | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._breaker = breaker
        self._config = config or ResearchConfig()

    # --- public API ---

    async def resolve_homepage(self, org_name: str, org_type: OrgType) -> ResolutionResult | None:
        tokens = name_tokens(org_name)
        if not tokens:
            logger.debug("No distinguishing tokens in '%s' — skipping research", org_name)
            return None

        via_graph = await self._knowledge_graph_homepage(org_name, org_type, tokens)
        if via_graph is not None and via_graph.score >= KNOWLEDGE_GRAPH_ACCEPT:
            return ResolutionResult(
                url=clean_url(via_graph.url),
                discovered_via=DiscoveredVia.KNOWLEDGE_GRAPH,
                notes=NOTE_KNOWLEDGE_GRAPH,
            )

        best: Candidate | None = None
        for query in build_homepage_queries(org_name, org_type, self._config.region):
            hits = await self.search(query)
            candidates = unique_urls(
                url for url in (normalize_home_candidate(h) for h in hits) if url.startswith("http")
            )
            for candidate_url in candidates[:MAX_HOMEPAGE_CANDIDATES]:
                scored = await self.score_homepage_candidate(candidate_url, org_type, tokens)
                if scored is not None and (best is None or scored.score > best.score):
                    best = scored
                if best is not None and best.score >= HOMEPAGE_EARLY_STOP:
                    break
            if best is not None and best.score >= HOMEPAGE_EARLY_STOP:
                break

        if best is None or best.score < HOMEPAGE_ACCEPT:
            return None
        return ResolutionResult(
            url=clean_url(best.url),
            discovered_via=DiscoveredVia.SEARCH,
            notes=NOTE_HOMEPAGE_SEARCH,
        )

    async def resolve_jobs_url(
        self,
        org_name: str,
        org_type: OrgType,
        homepage_url: str = "",
    ) -> ResolutionResult | None:
        tokens = name_tokens(org_name)
        if not tokens:
            logger.debug("No distinguishing tokens in '%s' — skipping research", org_name)
            return None

        best: Candidate | None = None
        for query in build_jobs_queries(org_name, org_type, homepage_url, self._config.region):
            candidates = unique_urls(await self.search(query))
            for candidate_url in candidates[:MAX_JOBS_CANDIDATES]:
                scored = await self.score_jobs_candidate(candidate_url, homepage_url, tokens)
                if scored is not None and (best is None or scored.score > best.score):
                    best = scored
                if best is not None and best.score >= JOBS_EARLY_STOP:
                    break
            if best is not None and best.score >= JOBS_EARLY_STOP:
                break

        if best is None or best.score < JOBS_ACCEPT:
            return None
        return ResolutionResult(
            url=clean_url(best.url),
            discovered_via=DiscoveredVia(best.origin.value),
            notes=NOTE_JOBS_SEARCH,
        )

    async def search(self, query: str) -> list[str]:
        """Candidate URLs for ``query``: cached, or scraped unless the breaker tripped."""
        cleaned = normalize_whitespace(query)
        if not cleaned:
            return []

        cached = self._cache.get(cleaned)
        if cached is not None:
            return cached
        if self._breaker.tripped:
            return []

        url = f"{self._config.search_url}?{urlencode({'q': cleaned, 'source': 'web'})}"
        response = await self._fetcher.fetch_maybe(
            url, max_bytes=SEARCH_MAX_BYTES, retries=1, timeout_ms=SEARCH_TIMEOUT_MS,
        )
        if response is None or response.status >= 400 or not response.body:
            self._cache.put(cleaned, [])
            return []

        if looks_like_search_challenge(response.body):
            self._cache.put(cleaned, [])
            if not self._breaker.tripped:
                logger.warning("Search fallback disabled due to anti-bot challenge response")
            self._breaker.trip()
            return []

        search_host = hostname(self._config.search_url)
        candidates = [
            c for c in extract_search_candidates(response.body)
            if not (search_host and hostname(c).endswith(search_host))
        ]
        self._cache.put(cleaned, candidates)
        if candidates:
            logger.info("Search query '%s' yielded %d candidates", cleaned, len(candidates))
        return candidates

    # --- scoring ---

    async def score_homepage_candidate(
        self,
        candidate_url: str,
        org_type: OrgType,
        tokens: list[str],
    ) -> Candidate | None:
        """Fetch a would-be homepage and score it against the name tokens."""
        candidate = normalize_home_candidate(candidate_url)
        host = hostname(candidate)
        if not host or is_blocked_host(host):
            return None

        response = await self._fetch_with_http_fallback(candidate)
        if response is None:
            return None

        text = f"{extract_title(response.body)} {response.body}".lower()
        hp = host_path(candidate)
        page_hits = count_token_hits(text, tokens)
        host_hits = count_token_hits(hp, tokens)
        if page_hits == 0 and host_hits == 0:
            return None

        score = page_hits * PAGE_TOKEN_WEIGHT + host_hits * HOST_TOKEN_WEIGHT
        if _OFFICIAL.search(text):
            score += OFFICIAL_BONUS
        vocab = _FIRST_NATION_VOCAB if org_type == OrgType.FIRST_NATION else _MUNICIPAL_VOCAB
        if vocab.search(text):
            score += DOMAIN_VOCAB_BONUS
        if _WRONG_SITE.search(hp):
            score -= WRONG_SITE_PENALTY

        return Candidate(url=clean_url(response.url), score=score, origin=Origin.SEARCH)

    async def score_jobs_candidate(
        self,
        candidate_url: str,
        homepage_url: str,
        tokens: list[str],
    ) -> Candidate | None:
        """Score a would-be jobs page; a known-ATS final URL is an immediate 100."""
        cleaned = clean_url(candidate_url)
        host = hostname(cleaned)
        if not host or is_blocked_host(host):
            return None

        known_ats = is_known_ats_url(cleaned)
        score = JOBS_ATS_BONUS if known_ats else 0
        if homepage_url and same_host(cleaned, homepage_url):
            score += SAME_HOST_BONUS
        elif homepage_url and not known_ats:
            score -= FOREIGN_HOST_PENALTY

        hp = host_path(cleaned)
        score += keyword_hits(hp, CAREER_TERMS) * HOST_KEYWORD_WEIGHT
        score += count_token_hits(hp, tokens)

        response = await self._fetch_with_http_fallback(cleaned)
        if response is not None:
            final_url = clean_url(response.url)
            if is_known_ats_url(final_url):
                return Candidate(url=final_url, score=JOBS_ATS_SCORE, origin=Origin.SEARCH)

            text = f"{extract_title(response.body)} {response.body.lower()}"
            score += keyword_hits(text, CAREER_TERMS)
            score += count_token_hits(text.lower(), tokens)
            is_pdf = looks_like_pdf(final_url) or "pdf" in response.content_type
            if is_pdf:
                score += PDF_BONUS
            return Candidate(
                url=final_url,
                score=score,
                origin=Origin.PDF if is_pdf else Origin.SEARCH,
                is_document=is_pdf,
            )

        is_pdf = looks_like_pdf(cleaned)
        if is_pdf:
            score += PDF_BONUS
        if score <= 0:
            return None
        return Candidate(
            url=cleaned,
            score=score,
            origin=Origin.PDF if is_pdf else Origin.SEARCH,
            is_document=is_pdf,
        )

    # --- knowledge graph ---

    async def _knowledge_graph_homepage(
        self,
        org_name: str,
        org_type: OrgType,
        tokens: list[str],
    ) -> Candidate | None:
        if org_type != OrgType.FIRST_NATION:
            return None

        best: Candidate | None = None
        for query in (f"{org_name} First Nation", org_name):
            params = urlencode({
                "action": "wbsearchentities",
                "format": "json",
                "language": "en",
                "type": "item",
                "limit": 8,
                "search": query,
            })
            payload = await self._fetch_json(f"{self._config.knowledge_graph_api_url}?{params}")
            items = payload.get("search") if isinstance(payload, dict) else None
            if not isinstance(items, list):
                continue

            for item in items[:MAX_ENTITIES]:
                if not isinstance(item, dict):
                    continue
                scored = await self._score_entity(item, org_name, org_type, tokens)
                if scored is not None and (best is None or scored.score > best.score):
                    best = scored

        if best is not None:
            logger.info("Knowledge graph matched '%s' => %s (score %.1f)", org_name, best.url, best.score)
        return best

    async def _score_entity(
        self,
        item: dict[str, Any],
        org_name: str,
        org_type: OrgType,
        tokens: list[str],
    ) -> Candidate | None:
        entity_id = str(item.get("id") or "").strip()
        if not entity_id:
            return None

        label = normalize_whitespace(str(item.get("label") or ""))
        description = normalize_whitespace(str(item.get("description") or ""))
        similarity = dice_similarity(org_name, label)
        if similarity < MIN_ENTITY_SIMILARITY:
            return None
        if not is_plausible_first_nation_entity(label, description):
            return None

        payload = await self._fetch_json(
            f"{self._config.knowledge_graph_entity_url}/{quote(entity_id)}.json",
        )
        entities = payload.get("entities") if isinstance(payload, dict) else None
        entity = entities.get(entity_id) if isinstance(entities, dict) else None
        if not isinstance(entity, dict):
            return None

        boost = similarity * SIMILARITY_WEIGHT
        if is_in_region(description):
            boost += REGION_BONUS

        best: Candidate | None = None
        for website in official_website_urls(entity)[:MAX_WEBSITES_PER_ENTITY]:
            scored = await self.score_homepage_candidate(website, org_type, tokens)
            if scored is None:
                continue
            boosted = Candidate(
                url=scored.url, score=scored.score + boost, origin=Origin.KNOWLEDGE_GRAPH,
            )
            if best is None or boosted.score > best.score:
                best = boosted
        return best

    # --- fetch helpers ---

    async def _fetch_json(self, url: str) -> dict[str, Any] | None:
        response = await self._fetcher.fetch_maybe(
            url,
            max_bytes=JSON_MAX_BYTES,
            retries=1,
            timeout_ms=CANDIDATE_TIMEOUT_MS,
            headers={"Accept": "application/json,text/javascript,*/*"},
        )
        if response is None or response.status >= 400 or not response.body:
            return None
        try:
            data = json.loads(response.body)
        except ValueError:
            logger.debug("Malformed JSON from %s", url)
            return None
        return data if isinstance(data, dict) else None

    async def _fetch_with_http_fallback(self, url: str) -> FetchResult | None:
        """Fetch ``url``; retry once over plain http when https fails."""
        response = await self._fetcher.fetch_maybe(
            url, max_bytes=CANDIDATE_MAX_BYTES, retries=1, timeout_ms=CANDIDATE_TIMEOUT_MS,
        )
        if (response is None or response.status >= 400) and url.startswith("https://"):
            response = await self._fetcher.fetch_maybe(
                "http://" + url[len("https://"):],
                max_bytes=CANDIDATE_MAX_BYTES,
                retries=1,
                timeout_ms=CANDIDATE_TIMEOUT_MS,
            )
        if response is None or response.status >= 400:
            return None
        return response
