"""eBay France search results adapter."""

from typing import Optional
from urllib.parse import urlsplit

from bs4 import Tag

from cardwatch.scrapers.base import SelectorSet, SelectorStrategy, SiteAdapter
from cardwatch.scrapers.utils.normalizer import clean_text, strip_query


EBAY_SELECTORS = SelectorSet(
    cards=".s-item",
    title=(".s-item__title span[role=heading]", ".s-item__title"),
    price=(".s-item__price",),
    link="a.s-item__link",
    image=".s-item__image img",
)

# eBay injects a sponsored card at the top of the result list
PLACEHOLDER_TITLES = {"shop on ebay", "achetez sur ebay"}

# Badge text prepended to the title of fresh listings
NEW_LISTING_PREFIXES = ("nouvelle annonce", "new listing")


class EbayStrategy(SelectorStrategy):
    """Drops the placeholder card and tracking queries from item links.

    The placeholder card reads as untitled, so the extractor drops it.
    """

    def __init__(self):
        super().__init__(EBAY_SELECTORS)

    def extract_title(self, card: Tag, link: Optional[str]) -> Optional[str]:
        title = super().extract_title(card, None)
        if not title:
            return None
        lowered = title.lower()
        if lowered in PLACEHOLDER_TITLES:
            return None
        for prefix in NEW_LISTING_PREFIXES:
            if lowered.startswith(prefix):
                title = clean_text(title[len(prefix):])
                break
        return title or None

    def canonicalize_link(self, url: str) -> str:
        # /itm/<id>?hash=...&amdata=... changes on every page load
        if "/itm/" in urlsplit(url).path:
            return strip_query(url)
        return url


EBAY_ADAPTER = SiteAdapter(
    site_id="ebay",
    name="eBay",
    base_url="https://www.ebay.fr",
    search_url="https://www.ebay.fr/sch/i.html",
    query_param="_nkw",
    fixed_params={"_sacat": "0", "_from": "R40"},
    strategy=EbayStrategy(),
    wait_selector=".s-item, .srp-results, #srp-river-results",
)
