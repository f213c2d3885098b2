"""Core data models for the resolution engine."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OrgType(str, Enum):
    MUNICIPALITY = "municipality"
    FIRST_NATION = "first_nation"


class JobsSourceType(str, Enum):
    ATS_WORKDAY = "ats_workday"
    ATS_TALEO = "ats_taleo"
    ATS_ICIMS = "ats_icims"
    ATS_NEOGOV = "ats_neogov"
    ATS_DAYFORCE = "ats_dayforce"
    ATS_BAMBOOHR = "ats_bamboohr"
    ATS_PAYCOM = "ats_paycom"
    HTML_LIST = "html_list"
    PDF = "pdf"
    UNKNOWN = "unknown"
    MANUAL_REVIEW = "manual_review"


class AdapterId(str, Enum):
    WORKDAY = "workday"
    TALEO = "taleo"
    ICIMS = "icims"
    NEOGOV = "neogov"
    DAYFORCE = "dayforce"
    BAMBOOHR = "bamboohr"
    PAYCOM = "paycom"
    HTML_LIST = "html_list"
    PDF = "pdf"
    GENERIC_DOM = "generic_dom"
    MANUAL = "manual"


class Origin(str, Enum):
    """Which strategy produced a candidate."""

    PATH_GUESS = "path_guess"
    LINK_TEXT = "link_text"
    BROWSER_CRAWL = "browser_crawl"
    SITEMAP = "sitemap"
    SEARCH = "search"
    KNOWLEDGE_GRAPH = "knowledge_graph"
    PDF = "pdf"


class DiscoveredVia(str, Enum):
    PATH_GUESS = "path_guess"
    LINK_TEXT = "link_text"
    BROWSER_CRAWL = "browser_crawl"
    SITEMAP = "sitemap"
    PDF = "pdf"
    SEARCH = "search"
    KNOWLEDGE_GRAPH = "knowledge_graph"
    MANUAL = "manual"


class FetchResult(BaseModel):
    """A fetched HTTP response after redirects, body possibly truncated."""

    model_config = ConfigDict(frozen=True)

    status: int
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""
    content_type: str = ""


class Anchor(BaseModel):
    """An ``<a href>`` resolved to an absolute, cleaned URL."""

    model_config = ConfigDict(frozen=True)

    url: str
    text: str
    snippet: str = ""


class Candidate(BaseModel):
    """A scored, provisional URL produced by one discovery strategy.

    Frozen. Never persisted; discarded at the end of one resolution call.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    score: float
    origin: Origin
    is_document: bool = False


class ClassificationResult(BaseModel):
    """Which platform serves a jobs page, with a discrete confidence."""

    model_config = ConfigDict(frozen=True)

    jobs_source_type: JobsSourceType
    adapter_id: AdapterId
    confidence: float = Field(ge=0.0, le=1.0)


class JobsDiscoveryResult(BaseModel):
    """Outcome of the jobs-URL cascade. An empty ``jobs_url`` means manual review."""

    model_config = ConfigDict(frozen=True)

    jobs_url: str = ""
    discovered_via: DiscoveredVia = DiscoveredVia.MANUAL
    notes: str = ""

    @property
    def needs_review(self) -> bool:
        return not self.jobs_url


class ResolutionResult(BaseModel):
    """A homepage or jobs URL found by web research. ``notes`` is free text."""

    model_config = ConfigDict(frozen=True)

    url: str
    discovered_via: DiscoveredVia
    notes: str = ""


class OrgSeed(BaseModel):
    """An organization to resolve, as read from settings."""

    org_name: str
    org_type: OrgType = OrgType.MUNICIPALITY
    homepage_url: str = ""
    alt_name: str = ""
    notes: str = ""


class OrgRecord(BaseModel):
    """Per-organization resolution outcome handed to downstream adapters."""

    org_id: str
    org_name: str
    org_type: OrgType
    homepage_url: str = ""
    jobs_url: str = ""
    jobs_source_type: JobsSourceType = JobsSourceType.MANUAL_REVIEW
    adapter: AdapterId = AdapterId.MANUAL
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    discovered_via: DiscoveredVia = DiscoveredVia.MANUAL
    last_verified: str = ""
    notes: str = ""
