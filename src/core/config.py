"""Configuration models and YAML loader for the resolution engine."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from src.core.schemas import OrgSeed

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; JobBoardDiscoveryBot/1.0; +https://example.invalid/bot)"
)


class HttpConfig(BaseModel):
    """HTTP client defaults. Per-call options override timeouts, retries and byte caps."""

    timeout_ms: int = Field(default=20000, ge=1000)
    fast_timeout_ms: int = Field(default=8000, ge=1000)
    host_interval_ms: int = Field(default=1000, ge=0)
    max_redirects: int = Field(default=8, ge=0, le=20)
    default_retries: int = Field(default=3, ge=0, le=10)
    default_max_bytes: int = Field(default=1_000_000, ge=0)
    user_agent: str = DEFAULT_USER_AGENT


class BrowserConfig(BaseModel):
    """Headless rendering configuration."""

    enabled: bool = True
    headless: bool = True
    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    idle_timeout_ms: int = Field(default=5000, ge=0)


class DiscoveryConfig(BaseModel):
    """Jobs-URL cascade switches."""

    fast: bool = False
    use_browser_crawl: bool = True
    classify_with_browser: bool = True


class ResearchConfig(BaseModel):
    """Web-research fallback endpoints and query qualifiers."""

    enabled: bool = True
    region: str = "ontario"
    search_url: str = "https://search.brave.com/search"
    knowledge_graph_api_url: str = "https://www.wikidata.org/w/api.php"
    knowledge_graph_entity_url: str = "https://www.wikidata.org/wiki/Special:EntityData"

    @field_validator("region")
    @classmethod
    def region_lower(cls, v: str) -> str:
        return v.strip().lower()


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    http: HttpConfig = Field(default_factory=HttpConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    research: ResearchConfig = Field(default_factory=ResearchConfig)
    concurrency: int = Field(default=6, ge=1, le=32)
    orgs: list[OrgSeed] = Field(default_factory=list)

    @field_validator("orgs")
    @classmethod
    def org_names_not_blank(cls, v: list[OrgSeed]) -> list[OrgSeed]:
        for seed in v:
            if not seed.org_name.strip():
                msg = "org_name must not be empty"
                raise ValueError(msg)
        return v

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
