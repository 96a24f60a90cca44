"""Run the card watcher once or on a schedule.

Usage:
    python scripts/run_watch.py --once
    python scripts/run_watch.py --once --dry-run --test-mode
    python scripts/run_watch.py --interval 30
    python scripts/run_watch.py --forget https://www.vinted.fr/items/123-carte
"""

import argparse
import asyncio
import os
import sys

# Add backend to path so we can import cardwatch modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

import structlog

from cardwatch.config import settings
from cardwatch.core.logging import configure_logging
from cardwatch.db.session import build_session_factory, create_engine_from_url, init_db
from cardwatch.scrapers.events import EventBus, ProgressEvent
from cardwatch.scrapers.fetchers import HttpPageFetcher, PlaywrightPageFetcher
from cardwatch.scrapers.orchestrator import ScrapeOrchestrator
from cardwatch.scrapers.register_adapters import build_default_registry
from cardwatch.scrapers.scheduler import RunScheduler
from cardwatch.scrapers.utils.pacing import PacingConfig, PacingScheduler
from cardwatch.services import (
    DeduplicationStore,
    DiscordWebhookSink,
    DryRunSink,
    RunLogService,
    WatchListService,
)

logger = structlog.get_logger("run_watch")


def _print_event(event: ProgressEvent) -> None:
    """Console listener mirroring the live dashboard feed."""
    logger.info("progress", **event.to_dict())


async def main_async(args: argparse.Namespace) -> int:
    engine = create_engine_from_url(settings.DATABASE_URL, echo=settings.DEBUG)
    await init_db(engine)
    session_factory = build_session_factory(engine)

    dedup_store = DeduplicationStore(session_factory)

    try:
        if args.forget:
            deleted = await dedup_store.forget(args.forget)
            print(f"{'Forgot' if deleted else 'Not found'}: {args.forget}")
            return 0

        if args.reset_history:
            count = await dedup_store.reset()
            print(f"Deleted {count} notification records")
            return 0

        registry = build_default_registry()
        adapters = registry.adapters(settings.get_enabled_sites())

        if args.fetcher == "http":
            fetcher = HttpPageFetcher(
                timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
                base_urls={a.site_id: a.base_url for a in adapters},
            )
        else:
            fetcher = PlaywrightPageFetcher(
                headless=settings.BROWSER_HEADLESS,
                timeout_seconds=settings.FETCH_TIMEOUT_SECONDS,
                wait_selectors={a.site_id: a.wait_selector for a in adapters if a.wait_selector},
            )

        if args.dry_run or settings.DRY_RUN:
            sink = DryRunSink()
        else:
            sink = DiscordWebhookSink(
                webhook_url=settings.DISCORD_WEBHOOK_URL,
                username=settings.DISCORD_USERNAME,
                mention=settings.DISCORD_MENTION,
            )

        pacing = PacingScheduler(
            PacingConfig(
                minimum_delay_ms=settings.PACING_MINIMUM_DELAY_MS,
                test_divisor=settings.PACING_TEST_DIVISOR,
            ),
            test_mode=args.test_mode or settings.PACING_TEST_MODE,
        )

        events = EventBus()
        events.subscribe(_print_event)

        watchlist = WatchListService(session_factory)
        orchestrator = ScrapeOrchestrator(
            registry=registry,
            fetcher=fetcher,
            dedup_store=dedup_store,
            run_log=RunLogService(session_factory),
            watchlist=watchlist,
            sink=sink,
            pacing=pacing,
            events=events,
            enabled_sites=settings.get_enabled_sites(),
        )

        if args.estimate:
            items = await watchlist.get_active_items()
            estimate = pacing.estimate_run_duration(len(items), len(adapters))
            print(
                f"{len(items)} items x {len(adapters)} sites: "
                f"~{estimate.total_minutes} min ({estimate.total_seconds} s)"
            )
            return 0

        try:
            if args.once:
                summary = await orchestrator.run()
                print(
                    f"Run {summary.state.value}: {len(summary.items)} items, "
                    f"{summary.result_count} listings, {summary.alerts_sent} alerts, "
                    f"{summary.site_errors} site errors, {summary.listing_errors} listing errors "
                    f"in {summary.duration_ms} ms"
                )
                return 0

            scheduler = RunScheduler(orchestrator)
            scheduler.schedule(interval_minutes=args.interval or settings.RUN_INTERVAL_MINUTES)
            scheduler.start()
            try:
                await asyncio.Event().wait()
            finally:
                scheduler.stop()
        finally:
            await fetcher.close()
            await sink.close()
    finally:
        await engine.dispose()

    return 0


def main():
    """Parse arguments and run the watcher."""
    parser = argparse.ArgumentParser(
        description="Watch marketplaces for collectible cards under a price ceiling",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/run_watch.py --once
  python scripts/run_watch.py --once --dry-run --test-mode
  python scripts/run_watch.py --interval 15 --fetcher http
        """,
    )
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    parser.add_argument("--dry-run", action="store_true", help="Log alerts instead of posting them")
    parser.add_argument("--test-mode", action="store_true", help="Divide every pacing delay")
    parser.add_argument(
        "--fetcher",
        choices=["browser", "http"],
        default="browser",
        help="Page transport (default: browser)",
    )
    parser.add_argument("--interval", type=int, help="Minutes between scheduled runs")
    parser.add_argument("--estimate", action="store_true", help="Print the expected run duration")
    parser.add_argument("--forget", metavar="URL", help="Allow one listing URL to notify again")
    parser.add_argument(
        "--reset-history",
        action="store_true",
        help="Delete every notification record",
    )

    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)

    try:
        sys.exit(asyncio.run(main_async(args)))
    except KeyboardInterrupt:
        print("\nStopped")


if __name__ == "__main__":
    main()
