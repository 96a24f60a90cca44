"""Pytest configuration and shared fixtures."""

from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from cardwatch.models import Base, WatchedItem
from cardwatch.scrapers.base import PageFetcher
from cardwatch.services.notifier import AlertMessage, NotificationSink


@pytest.fixture
def anyio_backend():
    """Use asyncio as the async backend for tests."""
    return "asyncio"


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def watched_item(session_factory) -> WatchedItem:
    """The Dracaufeu watch used across scenario tests."""
    item = WatchedItem(
        display_name="Dracaufeu ex 199/165",
        search_phrase="Dracaufeu ex 199/165",
        price_ceiling=Decimal("250.00"),
        is_active=True,
    )
    async with session_factory() as db:
        db.add(item)
        await db.commit()
        await db.refresh(item)
    return item


# ============================================================================
# FAKES
# ============================================================================

class FakeFetcher(PageFetcher):
    """Returns canned markup per site id, or raises the canned exception."""

    def __init__(self, pages: Dict[str, Union[str, Exception]]):
        self.pages = pages
        self.calls: List[Tuple[str, str]] = []

    async def fetch(self, url: str, site_hint: str) -> str:
        self.calls.append((url, site_hint))
        page = self.pages.get(site_hint, "")
        if isinstance(page, Exception):
            raise page
        return page


class RecordingSink(NotificationSink):
    """Collects alerts; delivery outcome is configurable."""

    def __init__(self, deliver: bool = True, error: Optional[Exception] = None):
        self.deliver = deliver
        self.error = error
        self.attempts: List[AlertMessage] = []

    async def send(self, message: AlertMessage) -> bool:
        self.attempts.append(message)
        if self.error is not None:
            raise self.error
        return self.deliver


class SleepRecorder:
    """Drop-in for asyncio.sleep that records the requested durations."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def sink_factory():
    return RecordingSink


@pytest.fixture
def fake_fetcher_factory():
    return FakeFetcher


# ============================================================================
# MARKUP BUILDERS
# ============================================================================

def build_ebay_page(cards: Sequence[Tuple[str, str, str]], with_placeholder: bool = True) -> str:
    """eBay search result page; cards are (title, price text, href)."""
    rows = []
    if with_placeholder:
        rows.append(
            '<li class="s-item s-item__pl-on-bottom">'
            '<a class="s-item__link" href="https://ebay.com/itm/123456">'
            '<div class="s-item__title"><span role="heading">Shop on eBay</span></div></a>'
            '<span class="s-item__price">20,00 EUR</span></li>'
        )
    for index, (title, price, href) in enumerate(cards):
        rows.append(
            '<li class="s-item">'
            f'<div class="s-item__image"><img src="https://i.ebayimg.com/images/g/{index}/s-l225.jpg"></div>'
            f'<a class="s-item__link" href="{href}">'
            f'<div class="s-item__title"><span role="heading">{title}</span></div></a>'
            f'<span class="s-item__price">{price}</span>'
            '</li>'
        )
    return (
        '<html><body><div id="srp-river-results"><ul class="srp-results">'
        + "".join(rows)
        + "</ul></div></body></html>"
    )


def build_vinted_page(cards: Sequence[Tuple[str, str, str]]) -> str:
    """Vinted catalog page; cards are (slug path, price text, image alt)."""
    rows = []
    for index, (path, price, alt) in enumerate(cards):
        rows.append(
            '<div class="feed-grid__item"><div class="new-item-box__container">'
            f'<img data-testid="product-item-id-{index}--image--img" '
            f'src="https://images1.vinted.net/t/{index}.webp" alt="{alt}">'
            f'<a class="new-item-box__overlay" href="{path}"></a>'
            f'<div><p data-testid="product-item-id-{index}--price-text">{price}</p></div>'
            '</div></div>'
        )
    return '<html><body><div class="feed-grid">' + "".join(rows) + "</div></body></html>"


@pytest.fixture
def ebay_page():
    return build_ebay_page


@pytest.fixture
def vinted_page():
    return build_vinted_page
