"""Marketplace adapter implementations.

Each module defines a SiteAdapter instance paired with its extraction
strategy.
"""

from .ebay import EBAY_ADAPTER, EbayStrategy
from .vinted import VINTED_ADAPTER, VintedStrategy

__all__ = [
    "EBAY_ADAPTER",
    "EbayStrategy",
    "VINTED_ADAPTER",
    "VintedStrategy",
]
