"""Tests for configuration models and YAML loading."""

from pathlib import Path
from textwrap import dedent

import pytest
from pydantic import ValidationError

from src.core.config import (
    BrowserConfig,
    DiscoveryConfig,
    HttpConfig,
    ResearchConfig,
    Settings,
)
from src.core.schemas import OrgType


class TestHttpConfig:
    def test_defaults(self) -> None:
        c = HttpConfig()
        assert c.timeout_ms == 20000
        assert c.host_interval_ms == 1000
        assert c.default_retries == 3
        assert c.max_redirects == 8

    def test_timeout_minimum(self) -> None:
        with pytest.raises(ValidationError, match="greater than or equal to 1000"):
            HttpConfig(timeout_ms=500)


class TestBrowserConfig:
    def test_defaults(self) -> None:
        c = BrowserConfig()
        assert c.enabled is True
        assert c.headless is True
        assert c.navigation_timeout_ms == 30000
        assert c.idle_timeout_ms == 5000


class TestDiscoveryConfig:
    def test_defaults(self) -> None:
        c = DiscoveryConfig()
        assert c.fast is False
        assert c.use_browser_crawl is True
        assert c.classify_with_browser is True


class TestResearchConfig:
    def test_region_lowercased(self) -> None:
        assert ResearchConfig(region="  Ontario ").region == "ontario"

    def test_endpoints(self) -> None:
        c = ResearchConfig()
        assert c.search_url.startswith("https://")
        assert "wikidata" in c.knowledge_graph_api_url


class TestSettings:
    def test_defaults(self) -> None:
        s = Settings()
        assert s.concurrency == 6
        assert s.orgs == []

    def test_concurrency_bounds(self) -> None:
        with pytest.raises(ValidationError):
            Settings(concurrency=0)
        with pytest.raises(ValidationError):
            Settings(concurrency=33)

    def test_blank_org_name_rejected(self) -> None:
        with pytest.raises(ValidationError, match="org_name must not be empty"):
            Settings(orgs=[{"org_name": "   "}])

    def test_bad_org_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Settings(orgs=[{"org_name": "X", "org_type": "province"}])

    def test_from_yaml(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text(dedent("""\
            http:
              host_interval_ms: 250
            discovery:
              fast: true
            research:
              region: Manitoba
            concurrency: 3
            orgs:
              - org_name: Example Town
                homepage_url: https://example-town.ca
              - org_name: Example First Nation
                org_type: first_nation
                alt_name: Example Band
        """))
        s = Settings.from_yaml(config_file)
        assert s.http.host_interval_ms == 250
        assert s.discovery.fast is True
        assert s.research.region == "manitoba"
        assert s.concurrency == 3
        assert len(s.orgs) == 2
        assert s.orgs[0].org_type == OrgType.MUNICIPALITY
        assert s.orgs[1].org_type == OrgType.FIRST_NATION
        assert s.orgs[1].alt_name == "Example Band"

    def test_from_yaml_empty_file(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("")
        assert Settings.from_yaml(config_file).orgs == []

    def test_from_yaml_missing_file(self) -> None:
        with pytest.raises(FileNotFoundError, match="Config file not found"):
            Settings.from_yaml("/nonexistent/settings.yaml")

    def test_from_yaml_invalid_values(self, tmp_path: Path) -> None:
        config_file = tmp_path / "settings.yaml"
        config_file.write_text("concurrency: 100\n")
        with pytest.raises(ValidationError):
            Settings.from_yaml(config_file)
