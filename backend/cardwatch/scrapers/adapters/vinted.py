"""Vinted catalog search adapter.

Vinted renders result cards client-side and obfuscates its CSS class names,
so the visible title text is unreliable. The item URL slug carries the
seller's title verbatim, which makes it the preferred source.
"""

import re
from typing import Optional

from bs4 import Tag

from cardwatch.scrapers.base import SelectorSet, SelectorStrategy, SiteAdapter, title_from_slug
from cardwatch.scrapers.utils.normalizer import clean_text


VINTED_SELECTORS = SelectorSet(
    cards=".feed-grid__item",
    title=(
        '[data-testid*="--description-title"]',
        ".web_ui__Text__title",
    ),
    price=(
        '[data-testid*="price"]',
        ".catalog-item__price",
        ".item-price",
        ".web_ui__Text__text",
        "span",
        "p",
    ),
    link="a[href]",
    image="img",
)

_EURO_AMOUNT = re.compile(r"\d[\d\s .,]*\s*€")


class VintedStrategy(SelectorStrategy):
    """Title from the item URL slug, price from the first text holding "€"."""

    def __init__(self):
        super().__init__(VINTED_SELECTORS)

    def extract_title(self, card: Tag, link: Optional[str]) -> Optional[str]:
        if link and "/items/" in link:
            title = title_from_slug(link)
            if title:
                return title
        return super().extract_title(card, None)

    def extract_price(self, card: Tag) -> Optional[str]:
        for selector in self.selectors.price:
            for element in card.select(selector):
                text = clean_text(element.get_text(" "))
                if "€" in text:
                    return text

        match = _EURO_AMOUNT.search(card.get_text(" "))
        if match:
            return clean_text(match.group(0))
        return None

    def extract_image(self, card: Tag) -> Optional[str]:
        image = card.select_one('img[data-testid*="image"]') or card.select_one("img")
        if image is None:
            return None
        return image.get("src") or image.get("data-src")


VINTED_ADAPTER = SiteAdapter(
    site_id="vinted",
    name="Vinted",
    base_url="https://www.vinted.fr",
    search_url="https://www.vinted.fr/catalog",
    query_param="search_text",
    fixed_params={"page": "1"},
    strategy=VintedStrategy(),
    wait_selector='.feed-grid__item, [data-testid="no-results"], .catalog-item',
)
