"""Build the site registry with every shipped marketplace adapter."""

import structlog

from cardwatch.scrapers.adapters import EBAY_ADAPTER, VINTED_ADAPTER
from cardwatch.scrapers.registry import SiteRegistry

logger = structlog.get_logger(__name__)


def register_all_adapters(registry: SiteRegistry) -> SiteRegistry:
    """Register all available adapters.

    Sites are visited in the order listed here.

    Args:
        registry: Registry to populate

    Returns:
        The same registry, for chaining
    """
    for adapter in (VINTED_ADAPTER, EBAY_ADAPTER):
        registry.register(adapter)

    logger.info(
        "all_adapters_registered",
        count=len(registry),
        sites=registry.site_ids(),
    )
    return registry


def build_default_registry() -> SiteRegistry:
    return register_all_adapters(SiteRegistry())
