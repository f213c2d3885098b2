"""CLI entry point for the jobs-URL resolution engine."""

import argparse
import asyncio
import logging
import sys
from contextlib import AsyncExitStack
from datetime import date

from src.browser.session import BrowserSession
from src.core.config import Settings
from src.core.schemas import OrgRecord
from src.net.http import HttpClient
from src.pipeline.orchestrator import (
    Resolver,
    export_records_json,
    select_manual_review,
    summarize,
)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Resolve homepages, jobs URLs and ATS platforms for public-sector organisations",
    )
    subparsers = parser.add_subparsers(dest="command")

    # --- resolve subcommand (default) ---
    resolve_parser = subparsers.add_parser("resolve", help="Resolve configured organisations")
    resolve_parser.add_argument(
        "--config",
        default="config/settings.yaml",
        help="Path to settings YAML file (default: config/settings.yaml)",
    )
    resolve_parser.add_argument(
        "--fast",
        action="store_true",
        help="Fast discovery: trimmed link crawl and 3-path probe, no retries",
    )
    resolve_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Never launch a headless browser",
    )
    resolve_parser.add_argument(
        "--export",
        choices=["json"],
        help="Export records to format (json)",
    )
    resolve_parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    # Default to resolve when no subcommand given
    argv = sys.argv[1:] if argv is None else list(argv)
    if not argv or argv[0] not in ("resolve", "-h", "--help"):
        argv = ["resolve", *argv]

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Fold CLI flags into the loaded settings."""
    if args.fast:
        settings = settings.model_copy(
            update={"discovery": settings.discovery.model_copy(update={"fast": True})},
        )
    if args.no_browser:
        settings = settings.model_copy(
            update={"browser": settings.browser.model_copy(update={"enabled": False})},
        )
    return settings


async def run(settings: Settings) -> list[OrgRecord]:
    """Resolve every configured organisation with a real HTTP client and browser."""
    async with AsyncExitStack() as stack:
        client = await stack.enter_async_context(HttpClient(settings.http))
        session = None
        if settings.browser.enabled and not settings.discovery.fast:
            session = await stack.enter_async_context(BrowserSession(settings.browser))

        resolver = Resolver(settings, client, session, run_date=date.today().isoformat())
        return await resolver.resolve_all()


def print_summary(records: list[OrgRecord]) -> None:
    counts = summarize(records)
    print(f"\nResolution complete: {counts['total']} organisations, "
          f"{counts['with_jobs_url']} with a jobs URL.")
    print(f"  manual_review: {counts['manual_review_total']}, "
          f"unknown: {counts['unknown_total']}, "
          f"flagged for review: {counts['manual_review_flag_total']}")

    for r in select_manual_review(records):
        print(f"  [review] {r.org_id} ({r.jobs_source_type.value}, {r.confidence:.1f}): {r.notes}")


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = Settings.from_yaml(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    settings = apply_overrides(settings, args)
    if not settings.orgs:
        print("No organisations configured — nothing to do.")
        return

    records = asyncio.run(run(settings))
    print_summary(records)

    if args.export == "json" and records:
        print(f"\n{export_records_json(records)}")


if __name__ == "__main__":
    main()
