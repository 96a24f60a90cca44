"""Core scraping types: listings, site adapters, extraction strategies, fetchers.

Every marketplace is described by a SiteAdapter (where to search) paired with
an ExtractionStrategy (how to read its result cards). Page retrieval sits
behind the PageFetcher interface so adapters never touch the transport.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from urllib.parse import unquote, urlencode, urlsplit

import structlog
from bs4 import BeautifulSoup, Tag

from cardwatch.models.base import utcnow
from cardwatch.scrapers.utils.normalizer import clean_text

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Listing:
    """One marketplace result card, projected to structured fields."""

    site: str
    title: str
    url: str  # Canonical listing URL, the deduplication key
    price_amount: Optional[Decimal] = None
    price_text: str = ""
    image_url: Optional[str] = None
    source_phrase: str = ""
    observed_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        """Validate data after initialization."""
        if not self.title:
            raise ValueError("title is required")
        if not self.url:
            raise ValueError("url is required")


@dataclass(frozen=True)
class SelectorSet:
    """CSS selectors locating a result card and its fields.

    Title and price hold prioritized candidates; the first selector yielding
    non-empty text wins.
    """

    cards: str
    title: Tuple[str, ...] = ()
    price: Tuple[str, ...] = ()
    link: str = "a[href]"
    image: str = "img"


class ExtractionStrategy(ABC):
    """Per-site rules for reading result cards out of a parsed page."""

    @abstractmethod
    def find_cards(self, soup: BeautifulSoup) -> List[Tag]:
        """Locate every result card in the page."""

    @abstractmethod
    def extract_title(self, card: Tag, link: Optional[str]) -> Optional[str]:
        """Read the listing title; link is the canonical URL when known."""

    @abstractmethod
    def extract_price(self, card: Tag) -> Optional[str]:
        """Read the raw price text, currency marker included."""

    @abstractmethod
    def extract_link(self, card: Tag) -> Optional[str]:
        """Read the raw href of the listing."""

    @abstractmethod
    def extract_image(self, card: Tag) -> Optional[str]:
        """Read the raw image src of the listing."""

    def canonicalize_link(self, url: str) -> str:
        """Turn an absolute listing URL into its stable form."""
        return url


class SelectorStrategy(ExtractionStrategy):
    """Generic strategy driven entirely by a SelectorSet.

    Site strategies subclass this and override only their quirks.
    """

    def __init__(self, selectors: SelectorSet):
        self.selectors = selectors

    def find_cards(self, soup: BeautifulSoup) -> List[Tag]:
        return soup.select(self.selectors.cards)

    def extract_title(self, card: Tag, link: Optional[str]) -> Optional[str]:
        for selector in self.selectors.title:
            element = card.select_one(selector)
            if element is None:
                continue
            text = clean_text(element.get_text(" "))
            if text:
                return text
            for attr in ("title", "alt"):
                value = clean_text(element.get(attr))
                if value:
                    return value

        anchor = self._find_anchor(card)
        if anchor is not None:
            for attr in ("title", "aria-label"):
                value = clean_text(anchor.get(attr))
                if value:
                    return value

        image = card.select_one(self.selectors.image) if self.selectors.image else None
        if image is not None:
            alt = clean_text(image.get("alt"))
            if alt:
                return alt

        return title_from_slug(link) if link else None

    def extract_price(self, card: Tag) -> Optional[str]:
        for selector in self.selectors.price:
            element = card.select_one(selector)
            if element is None:
                continue
            text = clean_text(element.get_text(" "))
            if text:
                return text
        return None

    def extract_link(self, card: Tag) -> Optional[str]:
        anchor = self._find_anchor(card)
        if anchor is None:
            return None
        href = anchor.get("href")
        return href.strip() if href else None

    def extract_image(self, card: Tag) -> Optional[str]:
        if not self.selectors.image:
            return None
        image = card.select_one(self.selectors.image)
        if image is None:
            return None
        return image.get("src") or image.get("data-src")

    def _find_anchor(self, card: Tag) -> Optional[Tag]:
        # The card itself may be the anchor
        if card.name == "a" and card.get("href"):
            return card
        return card.select_one(self.selectors.link)


def title_from_slug(url: str) -> Optional[str]:
    """Derive a readable title from the last path segment of a listing URL.

    "https://www.vinted.fr/items/4821-carte-dracaufeu-ex?ref=x" gives
    "carte dracaufeu ex". Returns None when the slug is too short to mean
    anything.
    """
    path = urlsplit(url).path.rstrip("/")
    slug = unquote(path.rsplit("/", 1)[-1]) if path else ""
    title = re.sub(r"^\d+\s*", "", slug.replace("-", " ").replace("_", " ")).strip()
    title = clean_text(title)
    return title if len(title) > 3 else None


@dataclass(frozen=True)
class SiteAdapter:
    """Static description of one marketplace.

    Attributes:
        site_id: Registry key, e.g. "vinted"
        name: Display name used in alerts
        base_url: Origin used to resolve relative links
        search_url: Search endpoint without query string
        query_param: Query parameter receiving the search phrase
        strategy: Extraction rules for the result page
        fixed_params: Parameters sent with every search, in order
        wait_selector: Selector a browser waits for before reading the page
    """

    site_id: str
    name: str
    base_url: str
    search_url: str
    query_param: str
    strategy: ExtractionStrategy
    fixed_params: Dict[str, str] = field(default_factory=dict)
    wait_selector: Optional[str] = None

    def build_search_url(self, phrase: str) -> str:
        """Build the search page URL for a phrase.

        Args:
            phrase: Watched item search phrase

        Returns:
            search_url with the phrase and every fixed parameter encoded
        """
        params = {self.query_param: phrase.strip()}
        for key, value in self.fixed_params.items():
            if key != self.query_param:
                params[key] = value
        return f"{self.search_url}?{urlencode(params)}"


class PageFetcher(ABC):
    """Retrieves fully rendered page markup for a URL."""

    @abstractmethod
    async def fetch(self, url: str, site_hint: str) -> str:
        """Fetch the markup at url.

        Args:
            url: Absolute page URL
            site_hint: Site id, used for site-specific waits and headers

        Returns:
            Page markup

        Raises:
            FetchTimeout: Navigation exceeded its time budget
            FetchBlocked: The site answered with an anti-bot challenge
            FetchTransportError: Network or protocol failure
        """

    async def close(self) -> None:
        """Release transport resources. Safe to call more than once."""
