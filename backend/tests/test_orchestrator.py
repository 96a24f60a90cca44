"""Tests for the scrape orchestrator pipeline.

Runs use real services on an in-memory database, canned result pages and a
recording sleep, so no network or wall-clock waiting is involved.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.exc import OperationalError

from cardwatch.core.exceptions import (
    FetchTimeout,
    PersistenceError,
    RunAlreadyActive,
    WatchListUnavailable,
)
from cardwatch.models import WatchedItem
from cardwatch.models.base import utcnow
from cardwatch.scrapers.adapters import EBAY_ADAPTER, VINTED_ADAPTER
from cardwatch.scrapers.base import PageFetcher
from cardwatch.scrapers.events import EventBus, EventKind
from cardwatch.scrapers.orchestrator import RunState, ScrapeOrchestrator
from cardwatch.scrapers.registry import SiteRegistry
from cardwatch.scrapers.utils.pacing import PacingScheduler
from cardwatch.services.dedup_store import DeduplicationStore
from cardwatch.services.run_log import RUN_SCOPE_SITE, RunLogService
from cardwatch.services.watchlist import WatchListService

from conftest import build_ebay_page


LISTING_A = ("Dracaufeu ex 199/165 FR PSA 10", "230,00 €", "https://www.ebay.fr/itm/111?hash=a")
LISTING_C = ("Pikachu ex 199/165", "10€", "https://www.ebay.fr/itm/333")
LISTING_D = ("Dracaufeu ex 199165 occasion", "999€", "https://www.ebay.fr/itm/444")

EMPTY_PAGE = "<html><body><ul class='srp-results'></ul></body></html>"


class BrokenWatchList:
    async def get_active_items(self):
        raise WatchListUnavailable("database is down")


class FailingRecordStore(DeduplicationStore):
    async def record_notification(self, *args, **kwargs):
        raise PersistenceError("disk full")


class FailingLookupStore(DeduplicationStore):
    async def has_notified(self, url):
        raise OperationalError("SELECT", {}, Exception("database is locked"))


class BlockingFetcher(PageFetcher):
    """Holds every fetch until released."""

    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch(self, url: str, site_hint: str) -> str:
        self.started.set()
        await self.release.wait()
        return EMPTY_PAGE


@pytest.fixture
def events():
    """Event bus recording every event kind."""
    bus = EventBus()
    bus.seen = []
    bus.subscribe(bus.seen.append)
    return bus


@pytest.fixture
def make_orchestrator(session_factory, sleep_recorder, fake_fetcher_factory, recording_sink, events):
    def build(pages=None, sites=(EBAY_ADAPTER,), **overrides):
        registry = SiteRegistry()
        for adapter in sites:
            registry.register(adapter)

        kwargs = dict(
            registry=registry,
            fetcher=fake_fetcher_factory(pages or {}),
            dedup_store=DeduplicationStore(session_factory),
            run_log=RunLogService(session_factory),
            watchlist=WatchListService(session_factory),
            sink=recording_sink,
            # Always draw the low end of each range
            pacing=PacingScheduler(rng=lambda a, b: a),
            events=events,
            sleep=sleep_recorder,
        )
        kwargs.update(overrides)
        return ScrapeOrchestrator(**kwargs)

    return build


@pytest_asyncio.fixture
async def second_item(session_factory, watched_item) -> WatchedItem:
    item = WatchedItem(
        display_name="Mew ex",
        search_phrase="Mew ex 151",
        price_ceiling=Decimal("40.00"),
        created_at=utcnow() + timedelta(minutes=1),
    )
    async with session_factory() as db:
        db.add(item)
        await db.commit()
        await db.refresh(item)
    return item


def kinds(bus):
    return [event.kind for event in bus.seen]


class TestPipeline:
    """End-to-end decisions for listings on a single site."""

    @pytest.mark.asyncio
    async def test_qualifying_listing_notified_once(
        self, make_orchestrator, watched_item, recording_sink, session_factory, events
    ):
        page = build_ebay_page([LISTING_A, LISTING_C, LISTING_D])
        orchestrator = make_orchestrator({"ebay": page})

        summary = await orchestrator.run()

        assert summary.state == RunState.COMPLETED
        assert summary.alerts_sent == 1
        assert [m.url for m in recording_sink.attempts] == ["https://www.ebay.fr/itm/111"]
        assert "230,00 €" in recording_sink.attempts[0].content
        assert await DeduplicationStore(session_factory).has_notified("https://www.ebay.fr/itm/111")

        site = summary.items[0].sites[0]
        assert site.result_count == 3
        assert site.relevant_count == 2
        assert site.qualifying_count == 1

        assert kinds(events) == [
            EventKind.RUN_START,
            EventKind.ITEM_START,
            EventKind.SITE_START,
            EventKind.NOTIFICATION_SENDING,
            EventKind.NOTIFICATION_SENT,
            EventKind.SITE_SUCCESS,
            EventKind.RUN_COMPLETE,
        ]
        sent = events.seen[4]
        assert sent.recorded is True
        assert sent.alert_count == 1
        assert sent.listing_url == "https://www.ebay.fr/itm/111"

    @pytest.mark.asyncio
    async def test_second_run_does_not_renotify(
        self, make_orchestrator, watched_item, recording_sink
    ):
        orchestrator = make_orchestrator({"ebay": build_ebay_page([LISTING_A])})

        await orchestrator.run()
        summary = await orchestrator.run()

        assert len(recording_sink.attempts) == 1
        assert summary.alerts_sent == 0
        assert summary.items[0].sites[0].already_notified == 1

    @pytest.mark.asyncio
    async def test_listing_without_price_is_rejected(
        self, make_orchestrator, watched_item, recording_sink
    ):
        page = build_ebay_page([("Dracaufeu ex 199/165", "Prix sur demande", "https://www.ebay.fr/itm/5")])

        summary = await make_orchestrator({"ebay": page}).run()

        assert recording_sink.attempts == []
        assert summary.items[0].sites[0].relevant_count == 1
        assert summary.items[0].sites[0].qualifying_count == 0

    @pytest.mark.asyncio
    async def test_price_equal_to_ceiling_qualifies(
        self, make_orchestrator, watched_item, recording_sink
    ):
        page = build_ebay_page([("Dracaufeu ex 199/165", "250,00 €", "https://www.ebay.fr/itm/6")])

        await make_orchestrator({"ebay": page}).run()

        assert len(recording_sink.attempts) == 1

    @pytest.mark.asyncio
    async def test_run_log_counts_extracted_listings(
        self, make_orchestrator, watched_item, session_factory
    ):
        page = build_ebay_page([LISTING_A, LISTING_C, LISTING_D])

        await make_orchestrator({"ebay": page}).run()

        rows = await RunLogService(session_factory).recent(watched_item_id=watched_item.id)
        assert len(rows) == 1
        assert rows[0].status == "success"
        assert rows[0].result_count == 3


class TestDeliveryFailures:
    @pytest.mark.asyncio
    async def test_undelivered_alert_retried_next_run(
        self, make_orchestrator, watched_item, sink_factory, session_factory
    ):
        page = build_ebay_page([LISTING_A])
        failing = sink_factory(deliver=False)

        summary = await make_orchestrator({"ebay": page}, sink=failing).run()

        assert len(failing.attempts) == 1
        assert summary.alerts_sent == 0
        assert await DeduplicationStore(session_factory).count() == 0
        assert summary.listing_errors == 1
        assert "not delivered" in summary.items[0].sites[0].error

        working = sink_factory()
        summary = await make_orchestrator({"ebay": page}, sink=working).run()

        assert len(working.attempts) == 1
        assert summary.alerts_sent == 1
        assert await DeduplicationStore(session_factory).count() == 1

    @pytest.mark.asyncio
    async def test_raising_sink_counts_as_not_delivered(
        self, make_orchestrator, watched_item, sink_factory, session_factory
    ):
        sink = sink_factory(error=RuntimeError("webhook exploded"))

        summary = await make_orchestrator({"ebay": build_ebay_page([LISTING_A])}, sink=sink).run()

        assert summary.state == RunState.COMPLETED
        assert summary.alerts_sent == 0
        assert await DeduplicationStore(session_factory).count() == 0

        site = summary.items[0].sites[0]
        assert site.status == "success"
        assert site.listing_errors == 1
        assert "webhook exploded" in site.error

    @pytest.mark.asyncio
    async def test_record_failure_still_counts_alert(
        self, make_orchestrator, watched_item, session_factory, events
    ):
        orchestrator = make_orchestrator(
            {"ebay": build_ebay_page([LISTING_A])},
            dedup_store=FailingRecordStore(session_factory),
        )

        summary = await orchestrator.run()

        assert summary.alerts_sent == 1
        sent = [e for e in events.seen if e.kind == EventKind.NOTIFICATION_SENT]
        assert sent[0].recorded is False
        assert "disk full" in sent[0].error

        site_event = next(e for e in events.seen if e.kind == EventKind.SITE_SUCCESS)
        assert "disk full" in site_event.error
        rows = await RunLogService(session_factory).recent(watched_item_id=watched_item.id)
        assert "disk full" in rows[0].error_message

    @pytest.mark.asyncio
    async def test_dedup_lookup_failure_reported_on_site(
        self, make_orchestrator, watched_item, recording_sink, session_factory, events
    ):
        orchestrator = make_orchestrator(
            {"ebay": build_ebay_page([LISTING_A])},
            dedup_store=FailingLookupStore(session_factory),
        )

        summary = await orchestrator.run()

        assert summary.state == RunState.COMPLETED
        assert summary.alerts_sent == 0
        assert recording_sink.attempts == []

        site = summary.items[0].sites[0]
        assert site.status == "success"
        assert site.qualifying_count == 1
        assert site.listing_errors == 1
        assert "database is locked" in site.error

        site_event = next(e for e in events.seen if e.kind == EventKind.SITE_SUCCESS)
        assert site_event.error == site.error
        rows = await RunLogService(session_factory).recent(watched_item_id=watched_item.id)
        assert rows[0].status == "success"
        assert rows[0].error_message == site.error

    @pytest.mark.asyncio
    async def test_clean_site_has_no_error(self, make_orchestrator, watched_item, events):
        summary = await make_orchestrator({"ebay": build_ebay_page([LISTING_A])}).run()

        assert summary.listing_errors == 0
        site_event = next(e for e in events.seen if e.kind == EventKind.SITE_SUCCESS)
        assert site_event.error is None


class TestSiteOutcomes:
    @pytest.mark.asyncio
    async def test_site_error_does_not_stop_other_sites(
        self, make_orchestrator, watched_item, recording_sink, session_factory, events
    ):
        orchestrator = make_orchestrator(
            {"vinted": FetchTimeout("vinted", "navigation timed out"), "ebay": build_ebay_page([LISTING_A])},
            sites=(VINTED_ADAPTER, EBAY_ADAPTER),
        )

        summary = await orchestrator.run()

        assert summary.state == RunState.COMPLETED
        assert [s.status for s in summary.items[0].sites] == ["error", "success"]
        assert summary.site_errors == 1
        assert len(recording_sink.attempts) == 1
        assert EventKind.SITE_ERROR in kinds(events)

        rows = await RunLogService(session_factory).recent()
        assert sorted(r.status for r in rows) == ["error", "success"]
        error_row = next(r for r in rows if r.status == "error")
        assert "navigation timed out" in error_row.error_message

    @pytest.mark.asyncio
    async def test_empty_page_is_no_results(
        self, make_orchestrator, watched_item, session_factory, events
    ):
        summary = await make_orchestrator({"ebay": EMPTY_PAGE}).run()

        assert summary.items[0].sites[0].status == "no_results"
        assert EventKind.SITE_NO_RESULTS in kinds(events)
        rows = await RunLogService(session_factory).recent()
        assert [r.status for r in rows] == ["no_results"]

    @pytest.mark.asyncio
    async def test_enabled_sites_filter(self, make_orchestrator, watched_item):
        orchestrator = make_orchestrator(
            {"vinted": EMPTY_PAGE, "ebay": EMPTY_PAGE},
            sites=(VINTED_ADAPTER, EBAY_ADAPTER),
            enabled_sites=["ebay"],
        )

        await orchestrator.run()

        assert [site for _, site in orchestrator.fetcher.calls] == ["ebay"]


class TestRunLifecycle:
    @pytest.mark.asyncio
    async def test_no_watched_items(self, make_orchestrator, recording_sink, sleep_recorder, events):
        orchestrator = make_orchestrator({"ebay": build_ebay_page([LISTING_A])})

        summary = await orchestrator.run()

        assert summary.state == RunState.COMPLETED
        assert summary.items == []
        assert recording_sink.attempts == []
        assert sleep_recorder.calls == []
        assert kinds(events) == [EventKind.RUN_START, EventKind.RUN_COMPLETE]

    @pytest.mark.asyncio
    async def test_unreadable_watch_list_fails_run(self, make_orchestrator, session_factory, events):
        orchestrator = make_orchestrator(watchlist=BrokenWatchList())

        with pytest.raises(WatchListUnavailable):
            await orchestrator.run()

        assert orchestrator.state == RunState.FAILED
        assert not orchestrator.is_running
        assert kinds(events) == [EventKind.RUN_ERROR]
        rows = await RunLogService(session_factory).recent()
        assert [r.site for r in rows] == [RUN_SCOPE_SITE]

    @pytest.mark.asyncio
    async def test_cancel_between_items(
        self, make_orchestrator, watched_item, second_item, events
    ):
        cancel = asyncio.Event()
        orchestrator = make_orchestrator({"ebay": EMPTY_PAGE})

        def cancel_on_first_site(event):
            if event.kind == EventKind.SITE_START:
                cancel.set()

        events.subscribe(cancel_on_first_site)

        summary = await orchestrator.run(cancel_event=cancel)

        assert summary.state == RunState.CANCELLED
        assert [i.item_name for i in summary.items] == ["Dracaufeu ex 199/165"]
        assert len(orchestrator.fetcher.calls) == 1
        assert kinds(events)[-1] == EventKind.RUN_COMPLETE

    @pytest.mark.asyncio
    async def test_pacing_between_sites_and_items(
        self, make_orchestrator, watched_item, second_item, sleep_recorder, events
    ):
        orchestrator = make_orchestrator(
            {"vinted": EMPTY_PAGE, "ebay": EMPTY_PAGE},
            sites=(VINTED_ADAPTER, EBAY_ADAPTER),
        )

        await orchestrator.run()

        # vinted, ebay, item pause, vinted; nothing after the final visit
        assert sleep_recorder.calls == [2.0, 2.5, 5.0, 2.0]
        assert kinds(events).count(EventKind.ITEM_DELAY) == 1

    @pytest.mark.asyncio
    async def test_notification_pause(self, make_orchestrator, watched_item, sleep_recorder):
        await make_orchestrator({"ebay": build_ebay_page([LISTING_A])}).run()

        assert sleep_recorder.calls == [0.6]

    @pytest.mark.asyncio
    async def test_concurrent_run_rejected(self, make_orchestrator, watched_item):
        fetcher = BlockingFetcher()
        orchestrator = make_orchestrator(fetcher=fetcher)

        task = asyncio.create_task(orchestrator.run())
        await fetcher.started.wait()
        try:
            assert orchestrator.is_running
            with pytest.raises(RunAlreadyActive):
                await orchestrator.run()
            with pytest.raises(RunAlreadyActive):
                await orchestrator.scrape_item(watched_item)
        finally:
            fetcher.release.set()

        summary = await task
        assert summary.state == RunState.COMPLETED
        assert not orchestrator.is_running

    @pytest.mark.asyncio
    async def test_scrape_single_item(self, make_orchestrator, watched_item, sleep_recorder):
        orchestrator = make_orchestrator(
            {"vinted": EMPTY_PAGE, "ebay": build_ebay_page([LISTING_A])},
            sites=(VINTED_ADAPTER, EBAY_ADAPTER),
        )

        outcome = await orchestrator.scrape_item(watched_item)

        assert [s.site for s in outcome.sites] == ["vinted", "ebay"]
        assert outcome.alerts_sent == 1
        # One pause after vinted plus the notification pause
        assert sleep_recorder.calls == [2.0, 0.6]
