"""Turn a marketplace result page into structured listings."""

from typing import List, Optional

import structlog
from bs4 import BeautifulSoup, Tag

from cardwatch.core.exceptions import ExtractionError
from cardwatch.scrapers.base import Listing, SiteAdapter
from cardwatch.scrapers.utils.normalizer import PriceNormalizer, resolve_url

logger = structlog.get_logger(__name__)


class ListingExtractor:
    """Projects every result card of a page to a Listing.

    The adapter's strategy decides where each field lives; this class handles
    link resolution, price parsing and per-card failure isolation.
    """

    def __init__(self, parser: str = "html.parser"):
        self.parser = parser

    def extract(self, adapter: SiteAdapter, markup: str, phrase: str) -> List[Listing]:
        """Extract listings from page markup.

        Cards missing a title or a link are dropped. A card that fails to
        parse is logged and skipped; the rest of the page is still read.

        Args:
            adapter: Site adapter whose strategy reads the cards
            markup: Raw page markup
            phrase: Search phrase the page was fetched for

        Returns:
            Listings in page order
        """
        soup = BeautifulSoup(markup or "", self.parser)
        cards = adapter.strategy.find_cards(soup)

        listings: List[Listing] = []
        dropped = 0
        for index, card in enumerate(cards):
            try:
                listing = self._extract_card(adapter, card, phrase)
            except Exception as e:
                logger.warning(
                    "card_extraction_failed",
                    site=adapter.site_id,
                    card_index=index,
                    error=str(e),
                )
                continue

            if listing is None:
                dropped += 1
                continue
            listings.append(listing)

        logger.debug(
            "listings_extracted",
            site=adapter.site_id,
            cards=len(cards),
            listings=len(listings),
            dropped=dropped,
        )
        return listings

    def _extract_card(self, adapter: SiteAdapter, card: Tag, phrase: str) -> Optional[Listing]:
        strategy = adapter.strategy

        raw_link = strategy.extract_link(card)
        link = resolve_url(raw_link, adapter.base_url)
        if not link:
            return None
        link = strategy.canonicalize_link(link)

        title = strategy.extract_title(card, link)
        if not title:
            return None

        price_text = strategy.extract_price(card) or ""
        image_url = resolve_url(strategy.extract_image(card), adapter.base_url)

        try:
            return Listing(
                site=adapter.site_id,
                title=title.strip(),
                url=link,
                price_amount=PriceNormalizer.parse_amount(price_text),
                price_text=price_text.strip(),
                image_url=image_url,
                source_phrase=phrase,
            )
        except ValueError as e:
            raise ExtractionError(f"Invalid listing on {adapter.site_id}: {e}") from e
