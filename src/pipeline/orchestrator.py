"""Orchestrator: resolves each seed organisation into an OrgRecord.

Per-organisation flow:
  1. Homepage: canonicalise the seed URL, else web research (retry alt_name)
  2. Jobs URL: discovery cascade, then web research when it comes back empty
  3. Classification: ATS classifier, or manual_review when no jobs URL
  4. Record: id, rounded confidence, provenance notes

Organisations run concurrently under a semaphore. The search cache and
circuit breaker are the only shared state. One organisation's unexpected
exception yields a manual_review record and never stops the batch.
"""

import asyncio
import json
import logging
from collections.abc import Iterable
from datetime import date

from src.browser.session import Renderer
from src.core.config import Settings
from src.core.schemas import (
    ClassificationResult,
    DiscoveredVia,
    JobsDiscoveryResult,
    JobsSourceType,
    OrgRecord,
    OrgSeed,
    OrgType,
)
from src.core.text import normalize_for_match, slugify
from src.discovery.cascade import discover_jobs_url
from src.discovery.classifier import MANUAL_RESULT, classify_jobs_source
from src.discovery.research import SearchCache, SearchCircuitBreaker, WebResearcher
from src.net.http import Fetcher, resolve_canonical_url

logger = logging.getLogger(__name__)

MANUAL_REVIEW_CONFIDENCE = 0.5
NOTE_SEPARATOR = " | "

_REVIEW_PRIORITY = {
    JobsSourceType.MANUAL_REVIEW: 0,
    JobsSourceType.UNKNOWN: 1,
}


def build_org_id(org_type: OrgType, index: int, org_name: str) -> str:
    """``mun-0001-<slug>`` / ``fn-0001-<slug>``; ``index`` is zero-based."""
    prefix = "mun" if org_type == OrgType.MUNICIPALITY else "fn"
    return f"{prefix}-{index + 1:04d}-{slugify(org_name)}"


def merge_notes(parts: Iterable[str]) -> str:
    """Join non-empty provenance notes, dropping exact duplicates."""
    seen: list[str] = []
    for part in parts:
        part = (part or "").strip()
        if part and part not in seen:
            seen.append(part)
    return NOTE_SEPARATOR.join(seen)


def round_confidence(value: float) -> float:
    return round(min(1.0, max(0.0, value)), 1)


def needs_manual_review(record: OrgRecord) -> bool:
    return (
        record.confidence < MANUAL_REVIEW_CONFIDENCE
        or record.jobs_source_type in (JobsSourceType.UNKNOWN, JobsSourceType.MANUAL_REVIEW)
    )


def select_manual_review(records: Iterable[OrgRecord]) -> list[OrgRecord]:
    """Records a human should look at, most urgent first."""
    flagged = [r for r in records if needs_manual_review(r)]
    return sorted(
        flagged,
        key=lambda r: (_REVIEW_PRIORITY.get(r.jobs_source_type, 2), r.confidence, r.org_name),
    )


def export_records_json(records: Iterable[OrgRecord]) -> str:
    """Export records as a JSON string."""
    return json.dumps([r.model_dump(mode="json") for r in records], indent=2)


class Resolver:
    """Resolves organisations against one fetcher, optional renderer and shared research state."""

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher,
        renderer: Renderer | None = None,
        *,
        cache: SearchCache | None = None,
        breaker: SearchCircuitBreaker | None = None,
        run_date: str | None = None,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._renderer = renderer
        self._research = WebResearcher(
            fetcher,
            cache if cache is not None else SearchCache(),
            breaker if breaker is not None else SearchCircuitBreaker(),
            settings.research,
        )
        self._run_date = run_date or date.today().isoformat()

    async def resolve_all(self, seeds: list[OrgSeed] | None = None) -> list[OrgRecord]:
        """Resolve every seed with at most ``settings.concurrency`` in flight.

        Output order matches input order.
        """
        seeds = self._settings.orgs if seeds is None else seeds
        semaphore = asyncio.Semaphore(self._settings.concurrency)

        async def _bounded(index: int, seed: OrgSeed) -> OrgRecord:
            async with semaphore:
                return await self.resolve_org(seed, index)

        return list(await asyncio.gather(*(_bounded(i, s) for i, s in enumerate(seeds))))

    async def resolve_org(self, seed: OrgSeed, index: int) -> OrgRecord:
        """Resolve a single organisation. Never raises."""
        org_id = build_org_id(seed.org_type, index, seed.org_name)
        try:
            record = await self._resolve(seed, org_id)
        except Exception as e:
            logger.warning("Processing '%s' failed: %s", seed.org_name, e, exc_info=True)
            return OrgRecord(
                org_id=org_id,
                org_name=seed.org_name,
                org_type=seed.org_type,
                homepage_url=seed.homepage_url,
                last_verified=self._run_date,
                notes=merge_notes([seed.notes, f"Processing failure: {e}"]),
            )

        logger.info(
            "%s: %s -> %s (%s, %.1f)",
            record.org_id,
            record.homepage_url or "-",
            record.jobs_url or "-",
            record.jobs_source_type.value,
            record.confidence,
        )
        return record

    async def _resolve(self, seed: OrgSeed, org_id: str) -> OrgRecord:
        notes = [seed.notes]
        research = self._settings.research
        discovery = self._settings.discovery

        homepage_url = ""
        if seed.homepage_url:
            homepage_url = await resolve_canonical_url(self._fetcher, seed.homepage_url)
        elif research.enabled:
            homepage_url, note = await self._research_homepage(seed)
            notes.append(note)

        jobs = await discover_jobs_url(
            homepage_url,
            self._fetcher,
            self._renderer if discovery.use_browser_crawl else None,
            fast=discovery.fast,
            fast_timeout_ms=self._settings.http.fast_timeout_ms,
        )
        if jobs.needs_review and research.enabled:
            jobs = await self._research_jobs_url(seed, homepage_url, jobs)
        notes.append(jobs.notes)

        classification = await self._classify(jobs)

        return OrgRecord(
            org_id=org_id,
            org_name=seed.org_name,
            org_type=seed.org_type,
            homepage_url=homepage_url,
            jobs_url=jobs.jobs_url,
            jobs_source_type=classification.jobs_source_type,
            adapter=classification.adapter_id,
            confidence=round_confidence(classification.confidence),
            discovered_via=jobs.discovered_via if jobs.jobs_url else DiscoveredVia.MANUAL,
            last_verified=self._run_date,
            notes=merge_notes(notes),
        )

    async def _research_homepage(self, seed: OrgSeed) -> tuple[str, str]:
        result = await self._research.resolve_homepage(seed.org_name, seed.org_type)
        alt_name = seed.alt_name.strip()
        if (
            result is None
            and alt_name
            and normalize_for_match(alt_name) != normalize_for_match(seed.org_name)
        ):
            logger.debug("Retrying homepage research for '%s' as '%s'", seed.org_name, alt_name)
            result = await self._research.resolve_homepage(alt_name, seed.org_type)
        if result is None:
            return "", ""
        return result.url, result.notes

    async def _research_jobs_url(
        self,
        seed: OrgSeed,
        homepage_url: str,
        fallback: JobsDiscoveryResult,
    ) -> JobsDiscoveryResult:
        result = await self._research.resolve_jobs_url(seed.org_name, seed.org_type, homepage_url)
        if result is None:
            return fallback
        return JobsDiscoveryResult(
            jobs_url=result.url,
            discovered_via=result.discovered_via,
            notes=result.notes,
        )

    async def _classify(self, jobs: JobsDiscoveryResult) -> ClassificationResult:
        if not jobs.jobs_url:
            return MANUAL_RESULT
        renderer = self._renderer if self._settings.discovery.classify_with_browser else None
        return await classify_jobs_source(jobs.jobs_url, self._fetcher, renderer)


def summarize(records: list[OrgRecord]) -> dict[str, int]:
    """Run summary counters printed by the CLI."""
    return {
        "total": len(records),
        "with_jobs_url": sum(1 for r in records if r.jobs_url),
        "manual_review_total": sum(
            1 for r in records if r.jobs_source_type == JobsSourceType.MANUAL_REVIEW
        ),
        "unknown_total": sum(1 for r in records if r.jobs_source_type == JobsSourceType.UNKNOWN),
        "manual_review_flag_total": len(select_manual_review(records)),
    }
