"""Page fetchers: a headless browser for JS-rendered sites and plain httpx.

Both raise only FetchError subclasses so callers handle a single family of
transport failures.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx
import structlog
from playwright.async_api import (
    Browser,
    Page,
    Playwright,
    async_playwright,
    Error as PlaywrightError,
    TimeoutError as PlaywrightTimeoutError,
)

from cardwatch.core.exceptions import FetchBlocked, FetchTimeout, FetchTransportError
from cardwatch.scrapers.base import PageFetcher
from cardwatch.scrapers.utils.user_agents import (
    ACCEPT_LANGUAGE,
    build_request_headers,
    get_random_user_agent,
)

logger = structlog.get_logger(__name__)


BLOCKED_STATUS_CODES = {403, 429}

# Fragments of the interstitial pages served by common bot-protection vendors
CHALLENGE_MARKERS = (
    "cf-chl-",
    "challenge-platform",
    "captcha-delivery.com",
    "px-captcha",
    "<title>access denied</title>",
)


def detect_block(site: str, status: Optional[int], markup: str) -> None:
    """Raise FetchBlocked when a response looks like an anti-bot wall.

    Args:
        site: Site id, for the error message
        status: HTTP status of the main document, if known
        markup: Page markup
    """
    if status in BLOCKED_STATUS_CODES:
        raise FetchBlocked(site, f"HTTP {status}")

    head = (markup or "")[:20000].lower()
    for marker in CHALLENGE_MARKERS:
        if marker in head:
            raise FetchBlocked(site, f"challenge page detected ({marker})")


class PlaywrightPageFetcher(PageFetcher):
    """Chromium-backed fetcher for client-rendered marketplaces.

    The browser is launched once and owned by this object. Every fetch gets
    a fresh context and page, closed on every exit path.
    """

    def __init__(
        self,
        headless: bool = True,
        timeout_seconds: float = 60.0,
        wait_selectors: Optional[Dict[str, str]] = None,
        block_resources: bool = True,
    ):
        """Initialize the fetcher without launching the browser.

        Args:
            headless: Run Chromium without a window
            timeout_seconds: Navigation time budget per fetch
            wait_selectors: Site id -> selector to wait for before reading
            block_resources: Skip images and fonts to speed up loads
        """
        self.headless = headless
        self.timeout_ms = timeout_seconds * 1000
        self.wait_selectors = wait_selectors or {}
        self.block_resources = block_resources
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Launch the browser. Safe to call more than once."""
        async with self._lock:
            if self._browser:
                return
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=[
                    "--disable-dev-shm-usage",
                    "--no-sandbox",
                ],
            )
            logger.info("browser_started", headless=self.headless)

    async def close(self) -> None:
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_stopped")

    async def __aenter__(self) -> "PlaywrightPageFetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _page(self) -> AsyncIterator[Page]:
        if not self._browser:
            await self.start()

        context = await self._browser.new_context(
            user_agent=get_random_user_agent(),
            viewport={"width": 1920, "height": 1080},
            locale="fr-FR",
            timezone_id="Europe/Paris",
            extra_http_headers={"Accept-Language": ACCEPT_LANGUAGE},
        )
        try:
            if self.block_resources:
                await context.route(
                    "**/*.{png,jpg,jpeg,gif,webp,svg,woff,woff2,ttf,eot}",
                    lambda route: route.abort(),
                )
            page = await context.new_page()
            yield page
        finally:
            await context.close()

    async def fetch(self, url: str, site_hint: str) -> str:
        status = None
        try:
            async with self._page() as page:
                logger.info("fetching_page", site=site_hint, url=url)
                response = await page.goto(
                    url, wait_until="domcontentloaded", timeout=self.timeout_ms
                )
                status = response.status if response else None

                wait_selector = self.wait_selectors.get(site_hint)
                if wait_selector:
                    try:
                        await page.wait_for_selector(
                            wait_selector, timeout=min(self.timeout_ms, 15000)
                        )
                    except PlaywrightTimeoutError:
                        # Empty result pages never render a card; read what is there
                        logger.warning("wait_selector_timeout", site=site_hint, selector=wait_selector)

                markup = await page.content()
        except PlaywrightTimeoutError as e:
            raise FetchTimeout(site_hint, str(e)) from e
        except PlaywrightError as e:
            raise FetchTransportError(site_hint, str(e)) from e

        detect_block(site_hint, status, markup)
        return markup


class HttpPageFetcher(PageFetcher):
    """httpx fetcher for server-rendered pages (eBay search renders without JS)."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        base_urls: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the fetcher.

        Args:
            timeout_seconds: Request timeout
            base_urls: Site id -> origin, sent as Referer
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.timeout_seconds = timeout_seconds
        self.base_urls = base_urls or {}
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_seconds,
                follow_redirects=True,
            )
        return self._client

    async def fetch(self, url: str, site_hint: str) -> str:
        client = self._get_client()
        headers = build_request_headers(self.base_urls.get(site_hint, ""))

        logger.info("fetching_page", site=site_hint, url=url)
        try:
            response = await client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise FetchTimeout(site_hint, str(e) or "request timed out") from e
        except httpx.HTTPError as e:
            raise FetchTransportError(site_hint, str(e) or type(e).__name__) from e

        detect_block(site_hint, response.status_code, response.text)
        if response.status_code >= 400:
            raise FetchTransportError(site_hint, f"HTTP {response.status_code}")
        return response.text

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
