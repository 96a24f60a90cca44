"""Marketplace scraping for card-watch.

This package provides:
- Site adapters and extraction strategies for each supported marketplace
- Page fetchers (headless browser and plain HTTP)
- Relevance matching and request pacing
- The orchestrator and scheduler driving periodic watch runs

The orchestrator and scheduler are imported from their modules directly.
"""

from .base import (
    ExtractionStrategy,
    Listing,
    PageFetcher,
    SelectorSet,
    SelectorStrategy,
    SiteAdapter,
)
from .events import EventBus, EventChannel, EventKind, ProgressEvent
from .extractor import ListingExtractor
from .registry import SiteRegistry
from .register_adapters import build_default_registry, register_all_adapters
from .relevance import MatchResult, RelevanceMatcher

__all__ = [
    # Core types
    "ExtractionStrategy",
    "Listing",
    "PageFetcher",
    "SelectorSet",
    "SelectorStrategy",
    "SiteAdapter",
    # Events
    "EventBus",
    "EventChannel",
    "EventKind",
    "ProgressEvent",
    # Pipeline pieces
    "ListingExtractor",
    "MatchResult",
    "RelevanceMatcher",
    # Registry
    "SiteRegistry",
    "build_default_registry",
    "register_all_adapters",
]
