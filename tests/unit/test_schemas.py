"""Tests for core schemas: enums, candidates, results and org records."""

import pytest
from pydantic import ValidationError

from src.core.schemas import (
    AdapterId,
    Candidate,
    ClassificationResult,
    DiscoveredVia,
    JobsDiscoveryResult,
    JobsSourceType,
    OrgRecord,
    OrgSeed,
    OrgType,
    Origin,
)


def _make_record(**overrides: object) -> OrgRecord:
    defaults: dict[str, object] = {
        "org_id": "mun-0001-example-town",
        "org_name": "Example Town",
        "org_type": OrgType.MUNICIPALITY,
    }
    defaults.update(overrides)
    return OrgRecord(**defaults)  # type: ignore[arg-type]


class TestEnums:
    def test_every_origin_is_a_discovered_via(self) -> None:
        for origin in Origin:
            assert DiscoveredVia(origin.value).value == origin.value

    def test_seven_vendors(self) -> None:
        vendors = [t for t in JobsSourceType if t.value.startswith("ats_")]
        assert len(vendors) == 7

    def test_string_values(self) -> None:
        assert OrgType("first_nation") == OrgType.FIRST_NATION
        assert AdapterId.GENERIC_DOM.value == "generic_dom"


class TestCandidate:
    def test_defaults(self) -> None:
        c = Candidate(url="https://a.ca/jobs", score=80, origin=Origin.PATH_GUESS)
        assert c.is_document is False

    def test_frozen_model(self) -> None:
        c = Candidate(url="https://a.ca/jobs", score=80, origin=Origin.PATH_GUESS)
        with pytest.raises(ValidationError):
            c.score = 1  # type: ignore[misc]


class TestClassificationResult:
    def test_confidence_bounds(self) -> None:
        with pytest.raises(ValidationError):
            ClassificationResult(
                jobs_source_type=JobsSourceType.UNKNOWN,
                adapter_id=AdapterId.GENERIC_DOM,
                confidence=1.5,
            )

    def test_equality(self) -> None:
        a = ClassificationResult(jobs_source_type=JobsSourceType.PDF, adapter_id=AdapterId.PDF, confidence=0.5)
        b = ClassificationResult(jobs_source_type=JobsSourceType.PDF, adapter_id=AdapterId.PDF, confidence=0.5)
        assert a == b


class TestJobsDiscoveryResult:
    def test_empty_needs_review(self) -> None:
        r = JobsDiscoveryResult()
        assert r.needs_review
        assert r.discovered_via == DiscoveredVia.MANUAL

    def test_found(self) -> None:
        r = JobsDiscoveryResult(jobs_url="https://a.ca/jobs", discovered_via=DiscoveredVia.SITEMAP)
        assert not r.needs_review


class TestOrgModels:
    def test_seed_defaults(self) -> None:
        seed = OrgSeed(org_name="Example Town")
        assert seed.org_type == OrgType.MUNICIPALITY
        assert seed.homepage_url == ""
        assert seed.alt_name == ""

    def test_record_defaults_to_manual_review(self) -> None:
        r = _make_record()
        assert r.jobs_source_type == JobsSourceType.MANUAL_REVIEW
        assert r.adapter == AdapterId.MANUAL
        assert r.discovered_via == DiscoveredVia.MANUAL
        assert r.confidence == 0.0

    def test_record_json_uses_enum_values(self) -> None:
        data = _make_record(jobs_source_type=JobsSourceType.HTML_LIST).model_dump(mode="json")
        assert data["jobs_source_type"] == "html_list"
        assert data["org_type"] == "municipality"
