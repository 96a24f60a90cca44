"""Scrape run orchestration.

For every active watched item, every enabled site is visited in turn:
fetch -> extract -> relevance -> price ceiling -> dedup -> notify -> record.
Sites and items are processed strictly one after another with randomized
pauses in between; a failure on one (item, site) pair never stops the run.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

import structlog

from cardwatch.core.exceptions import (
    DedupStoreUnavailable,
    PersistenceError,
    RunAlreadyActive,
    WatchListUnavailable,
)
from cardwatch.models.base import utcnow
from cardwatch.models.watched_item import WatchedItem
from cardwatch.scrapers.base import Listing, PageFetcher, SiteAdapter
from cardwatch.scrapers.events import EventBus, EventKind, ProgressEvent
from cardwatch.scrapers.extractor import ListingExtractor
from cardwatch.scrapers.registry import SiteRegistry
from cardwatch.scrapers.relevance import RelevanceMatcher
from cardwatch.scrapers.utils.pacing import PacingScheduler
from cardwatch.services.dedup_store import DeduplicationStore
from cardwatch.services.notifier import NotificationSink, format_alert
from cardwatch.services.run_log import (
    RUN_SCOPE_SITE,
    STATUS_ERROR,
    STATUS_NO_RESULTS,
    STATUS_SUCCESS,
    RunLogService,
)
from cardwatch.services.watchlist import WatchListService

logger = structlog.get_logger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SiteOutcome:
    """Result of scraping one site for one watched item."""

    site: str
    status: str
    result_count: int = 0
    relevant_count: int = 0
    qualifying_count: int = 0
    already_notified: int = 0
    alerts_sent: int = 0
    duration_ms: int = 0
    listing_errors: int = 0
    # Fatal error for the site, or the last per-listing failure on a success
    error: Optional[str] = None

    def listing_failed(self, error: str) -> None:
        self.listing_errors += 1
        self.error = error


@dataclass
class ItemOutcome:
    item_id: str
    item_name: str
    sites: List[SiteOutcome] = field(default_factory=list)

    @property
    def alerts_sent(self) -> int:
        return sum(site.alerts_sent for site in self.sites)

    @property
    def result_count(self) -> int:
        return sum(site.result_count for site in self.sites)


@dataclass
class RunSummary:
    """Aggregated outcome of one run."""

    state: RunState = RunState.RUNNING
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    items: List[ItemOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def alerts_sent(self) -> int:
        return sum(item.alerts_sent for item in self.items)

    @property
    def result_count(self) -> int:
        return sum(item.result_count for item in self.items)

    @property
    def site_errors(self) -> int:
        return sum(
            1 for item in self.items for site in item.sites if site.status == STATUS_ERROR
        )

    @property
    def listing_errors(self) -> int:
        return sum(site.listing_errors for item in self.items for site in item.sites)

    @property
    def duration_ms(self) -> int:
        if self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class ScrapeOrchestrator:
    """Runs the watch pipeline over every (watched item x site) pair.

    Only one run executes at a time per instance. Errors scoped to one
    (item, site) pair are logged, audited and reported as events; only an
    unreadable watch list or an unreachable dedup store fails the run.
    """

    def __init__(
        self,
        registry: SiteRegistry,
        fetcher: PageFetcher,
        dedup_store: DeduplicationStore,
        run_log: RunLogService,
        watchlist: WatchListService,
        sink: NotificationSink,
        pacing: Optional[PacingScheduler] = None,
        extractor: Optional[ListingExtractor] = None,
        matcher: Optional[RelevanceMatcher] = None,
        events: Optional[EventBus] = None,
        enabled_sites: Optional[Sequence[str]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Wire the orchestrator.

        Args:
            registry: Site adapters, visited in registration order
            fetcher: Page transport
            dedup_store: Notification history
            run_log: Audit log writer
            watchlist: Watched item reader
            sink: Alert destination
            pacing: Delay policy; defaults to PacingScheduler()
            extractor: Markup -> listings; defaults to ListingExtractor()
            matcher: Title relevance; defaults to RelevanceMatcher()
            events: Progress event bus; a private one is created if omitted
            enabled_sites: Site ids to visit; all registered sites when empty
            sleep: Coroutine taking seconds, replaced in tests
        """
        self.registry = registry
        self.fetcher = fetcher
        self.dedup_store = dedup_store
        self.run_log = run_log
        self.watchlist = watchlist
        self.sink = sink
        self.pacing = pacing or PacingScheduler()
        self.extractor = extractor or ListingExtractor()
        self.matcher = matcher or RelevanceMatcher()
        self.events = events or EventBus()
        self.enabled_sites = list(enabled_sites or [])
        self._sleep = sleep
        self._state = RunState.IDLE
        self._active = False
        self._alerts_in_run = 0
        self.logger = logger.bind(service="scrape_orchestrator")

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._active

    def _adapters(self) -> List[SiteAdapter]:
        return self.registry.adapters(self.enabled_sites)

    async def run(self, cancel_event: Optional[asyncio.Event] = None) -> RunSummary:
        """Execute one full pass over the watch list.

        Args:
            cancel_event: Checked between steps; when set the run stops early
                and ends CANCELLED

        Returns:
            RunSummary with per-item, per-site outcomes

        Raises:
            RunAlreadyActive: If a run is already in progress
            WatchListUnavailable: If watched items cannot be loaded
            DedupStoreUnavailable: If the notification store is unreachable
        """
        if self._active:
            raise RunAlreadyActive()
        self._active = True
        self._state = RunState.RUNNING
        self._alerts_in_run = 0
        summary = RunSummary()

        try:
            try:
                await self.dedup_store.ping()
                items = await self.watchlist.get_active_items()
            except (DedupStoreUnavailable, WatchListUnavailable) as e:
                await self._fail(summary, e)
                raise

            adapters = self._adapters()
            self.logger.info(
                "scrape_run_started",
                items=len(items),
                sites=[adapter.site_id for adapter in adapters],
            )
            await self._emit(EventKind.RUN_START, item_count=len(items))

            cancelled = False
            for index, item in enumerate(items):
                if _is_set(cancel_event):
                    cancelled = True
                    break

                is_last_item = index == len(items) - 1
                outcome = await self._process_item(
                    item, adapters, index, len(items), is_last_item, cancel_event
                )
                summary.items.append(outcome)

                if _is_set(cancel_event):
                    cancelled = True
                    break

                if not is_last_item:
                    delay_ms = self.pacing.delay_between_watched_items(outcome.alerts_sent)
                    await self._emit(
                        EventKind.ITEM_DELAY,
                        item=item,
                        alert_count=outcome.alerts_sent,
                        delay_ms=delay_ms,
                    )
                    await self._sleep(delay_ms / 1000)

            summary.state = RunState.CANCELLED if cancelled else RunState.COMPLETED
            summary.finished_at = utcnow()
            self._state = summary.state

            self.logger.info(
                "scrape_run_finished",
                state=summary.state.value,
                items=len(summary.items),
                results=summary.result_count,
                alerts=summary.alerts_sent,
                site_errors=summary.site_errors,
                listing_errors=summary.listing_errors,
                duration_ms=summary.duration_ms,
            )
            await self._emit(
                EventKind.RUN_COMPLETE,
                item_count=len(summary.items),
                result_count=summary.result_count,
                alert_count=summary.alerts_sent,
            )
            return summary
        except asyncio.CancelledError:
            self._state = RunState.CANCELLED
            raise
        except (DedupStoreUnavailable, WatchListUnavailable):
            raise
        except Exception as e:
            await self._fail(summary, e)
            raise
        finally:
            self._active = False

    async def scrape_item(self, item: WatchedItem) -> ItemOutcome:
        """Run the pipeline for a single watched item across every enabled site.

        No trailing delay is applied after the last site.

        Raises:
            RunAlreadyActive: If a run is already in progress
        """
        if self._active:
            raise RunAlreadyActive()
        self._active = True
        self._alerts_in_run = 0
        try:
            return await self._process_item(item, self._adapters(), 0, 1, True, None)
        finally:
            self._active = False

    async def _fail(self, summary: RunSummary, error: Exception) -> None:
        summary.state = RunState.FAILED
        summary.error = str(error)
        summary.finished_at = utcnow()
        self._state = RunState.FAILED

        self.logger.error("scrape_run_failed", error=str(error), exc_info=True)
        await self.run_log.record(
            site=RUN_SCOPE_SITE,
            status=STATUS_ERROR,
            error_message=str(error),
        )
        await self._emit(EventKind.RUN_ERROR, error=str(error))

    async def _process_item(
        self,
        item: WatchedItem,
        adapters: List[SiteAdapter],
        index: int,
        item_count: int,
        is_last_item: bool,
        cancel_event: Optional[asyncio.Event],
    ) -> ItemOutcome:
        outcome = ItemOutcome(item_id=str(item.id), item_name=item.display_name)
        await self._emit(
            EventKind.ITEM_START,
            item=item,
            item_index=index,
            item_count=item_count,
        )

        for site_index, adapter in enumerate(adapters):
            if _is_set(cancel_event):
                break

            outcome.sites.append(await self._process_site(item, adapter))

            is_last_visit = is_last_item and site_index == len(adapters) - 1
            if not is_last_visit:
                delay_ms = self.pacing.delay_after_site(adapter.site_id)
                self.logger.debug("site_delay", site=adapter.site_id, delay_ms=round(delay_ms))
                await self._sleep(delay_ms / 1000)

        return outcome

    async def _process_site(self, item: WatchedItem, adapter: SiteAdapter) -> SiteOutcome:
        site = adapter.site_id
        started = time.monotonic()
        await self._emit(EventKind.SITE_START, item=item, site=site)

        try:
            url = adapter.build_search_url(item.search_phrase)
            markup = await self.fetcher.fetch(url, site)
            listings = self.extractor.extract(adapter, markup, item.search_phrase)
        except Exception as e:
            duration_ms = _elapsed_ms(started)
            self.logger.warning(
                "site_scrape_failed",
                site=site,
                item=item.display_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.run_log.record(
                site=site,
                status=STATUS_ERROR,
                duration_ms=duration_ms,
                watched_item_id=item.id,
                error_message=str(e),
            )
            await self._emit(EventKind.SITE_ERROR, item=item, site=site, error=str(e))
            return SiteOutcome(site=site, status=STATUS_ERROR, duration_ms=duration_ms, error=str(e))

        if not listings:
            duration_ms = _elapsed_ms(started)
            self.logger.info("site_no_results", site=site, item=item.display_name)
            await self.run_log.record(
                site=site,
                status=STATUS_NO_RESULTS,
                duration_ms=duration_ms,
                watched_item_id=item.id,
            )
            await self._emit(EventKind.SITE_NO_RESULTS, item=item, site=site, result_count=0)
            return SiteOutcome(site=site, status=STATUS_NO_RESULTS, duration_ms=duration_ms)

        outcome = SiteOutcome(site=site, status=STATUS_SUCCESS, result_count=len(listings))
        await self._process_listings(item, adapter, listings, outcome)
        outcome.duration_ms = _elapsed_ms(started)

        self.logger.info(
            "site_scraped",
            site=site,
            item=item.display_name,
            results=outcome.result_count,
            relevant=outcome.relevant_count,
            qualifying=outcome.qualifying_count,
            already_notified=outcome.already_notified,
            alerts=outcome.alerts_sent,
            listing_errors=outcome.listing_errors,
        )
        await self.run_log.record(
            site=site,
            status=STATUS_SUCCESS,
            result_count=outcome.result_count,
            duration_ms=outcome.duration_ms,
            watched_item_id=item.id,
            error_message=outcome.error,
        )
        await self._emit(
            EventKind.SITE_SUCCESS,
            item=item,
            site=site,
            result_count=outcome.result_count,
            alert_count=outcome.alerts_sent,
            error=outcome.error,
        )
        return outcome

    async def _process_listings(
        self,
        item: WatchedItem,
        adapter: SiteAdapter,
        listings: List[Listing],
        outcome: SiteOutcome,
    ) -> None:
        ceiling = Decimal(item.price_ceiling)

        for listing in listings:
            match = self.matcher.explain(item.search_phrase, listing.title)
            if not match.accepted:
                self.logger.debug(
                    "listing_rejected_relevance",
                    site=adapter.site_id,
                    title=listing.title,
                    reason=match.reason,
                    missing_references=list(match.missing_references),
                    missing_tokens=list(match.missing_tokens),
                )
                continue
            outcome.relevant_count += 1

            if listing.price_amount is None or listing.price_amount > ceiling:
                self.logger.debug(
                    "listing_rejected_price",
                    site=adapter.site_id,
                    title=listing.title,
                    price=str(listing.price_amount),
                    ceiling=str(ceiling),
                )
                continue
            outcome.qualifying_count += 1

            try:
                if await self.dedup_store.has_notified(listing.url):
                    outcome.already_notified += 1
                    continue
                if await self._notify(item, adapter, listing, outcome):
                    outcome.alerts_sent += 1
            except Exception as e:
                self.logger.error(
                    "listing_processing_failed",
                    site=adapter.site_id,
                    url=listing.url,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                outcome.listing_failed(f"{listing.url}: {e}")

    async def _notify(
        self,
        item: WatchedItem,
        adapter: SiteAdapter,
        listing: Listing,
        outcome: SiteOutcome,
    ) -> bool:
        """Send one alert, record it on success, then pause.

        Send and record failures are counted on the site outcome.

        Returns:
            True if the alert was delivered
        """
        await self._emit(
            EventKind.NOTIFICATION_SENDING,
            item=item,
            site=adapter.site_id,
            listing=listing,
        )

        message = format_alert(item, listing, adapter.name)
        send_error = "notification not delivered"
        try:
            delivered = await self.sink.send(message)
        except Exception as e:
            self.logger.error("notification_send_failed", url=listing.url, error=str(e))
            send_error = f"send failed: {e}"
            delivered = False

        if delivered:
            self._alerts_in_run += 1
            recorded = False
            record_error = None
            try:
                recorded = await self.dedup_store.record_notification(
                    site=listing.site,
                    url=listing.url,
                    title=listing.title,
                    amount=listing.price_amount,
                    watched_item_id=item.id,
                )
            except PersistenceError as e:
                self.logger.error("notification_not_recorded", url=listing.url, error=str(e))
                record_error = f"{listing.url}: record failed: {e}"
                outcome.listing_failed(record_error)

            self.logger.info(
                "notification_sent",
                site=adapter.site_id,
                item=item.display_name,
                url=listing.url,
                price=str(listing.price_amount),
                recorded=recorded,
            )
            await self._emit(
                EventKind.NOTIFICATION_SENT,
                item=item,
                site=adapter.site_id,
                listing=listing,
                recorded=recorded,
                alert_count=self._alerts_in_run,
                error=record_error,
            )
        else:
            self.logger.warning("notification_not_delivered", site=adapter.site_id, url=listing.url)
            outcome.listing_failed(f"{listing.url}: {send_error}")

        await self._sleep(self.pacing.notification_delay(self._alerts_in_run) / 1000)
        return delivered

    async def _emit(
        self,
        kind: EventKind,
        item: Optional[WatchedItem] = None,
        listing: Optional[Listing] = None,
        **fields,
    ) -> None:
        if item is not None:
            fields.setdefault("item_id", str(item.id))
            fields.setdefault("item_name", item.display_name)
        if listing is not None:
            fields.setdefault("listing_title", listing.title)
            fields.setdefault("listing_url", listing.url)
            fields.setdefault("listing_price", listing.price_amount)
        await self.events.emit(ProgressEvent(kind=kind, **fields))


def _is_set(event: Optional[asyncio.Event]) -> bool:
    return event is not None and event.is_set()


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
