"""Price parsing and URL normalization for scraped listing cards."""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import structlog

logger = structlog.get_logger(__name__)


# Either a grouped number ("1 234,56", "1.234", "12,345.67") or a plain one ("230,00", "10")
_AMOUNT_PATTERN = re.compile(
    r"(?<![\d])"
    r"(\d{1,3}(?:[ \u00a0\u202f.,]\d{3})+(?:[.,]\d{1,2})?|\d+(?:[.,]\d+)?)"
    r"(?![\d])"
)

_CURRENCY_MARKERS = ("€", "$", "£", "eur", "usd", "gbp", "chf")


class PriceNormalizer:
    """Price parsing utilities.

    Marketplace price text arrives in many shapes: "230,00 €", "EUR 15,99",
    "1 234,56 €", "$1,234.50", "de 5,00 € à 10,00 €". Only the first amount
    is kept.
    """

    @staticmethod
    def parse_amount(raw: Optional[str]) -> Optional[Decimal]:
        """Extract the first decimal or integer quantity from price text.

        Args:
            raw: Raw price text, possibly with a currency marker

        Returns:
            Decimal amount, or None if no quantity is present
        """
        if not raw:
            return None

        text = raw.replace("\u00a0", " ").replace("\u202f", " ").strip()
        match = _AMOUNT_PATTERN.search(text)
        if not match:
            return None

        return PriceNormalizer._to_decimal(match.group(1))

    @staticmethod
    def _to_decimal(number: str) -> Optional[Decimal]:
        """Convert a matched number to Decimal, resolving separators.

        The last "." or "," followed by one or two digits is the decimal
        separator; every other separator groups thousands.
        """
        compact = re.sub(r"[ \u00a0\u202f]", "", number)

        decimal_match = re.search(r"[.,](\d{1,2})$", compact)
        if decimal_match:
            integer_part = re.sub(r"[.,]", "", compact[: decimal_match.start()])
            cleaned = f"{integer_part}.{decimal_match.group(1)}"
        else:
            cleaned = re.sub(r"[.,]", "", compact)

        try:
            return Decimal(cleaned)
        except InvalidOperation:
            logger.debug("price_parse_failed", raw=number)
            return None

    @staticmethod
    def has_currency_marker(text: Optional[str]) -> bool:
        if not text:
            return False
        lowered = text.lower()
        return any(marker in lowered for marker in _CURRENCY_MARKERS)


def resolve_url(url: Optional[str], base_url: str) -> Optional[str]:
    """Resolve protocol-relative and site-relative links.

    Args:
        url: Raw href/src attribute value
        base_url: Marketplace origin, e.g. "https://www.vinted.fr"

    Returns:
        Absolute URL, or None for empty input
    """
    if not url:
        return None

    url = url.strip()
    if not url:
        return None

    if url.startswith("//"):
        return f"https:{url}"

    if url.startswith("/"):
        return f"{base_url.rstrip('/')}{url}"

    return url


def strip_query(url: str) -> str:
    """Drop the query string and fragment, keeping scheme, host and path."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace runs in text pulled from markup."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()
