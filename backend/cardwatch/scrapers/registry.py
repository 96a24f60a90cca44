"""Registry mapping site ids to their SiteAdapter."""

from typing import Dict, Iterable, List, Optional

import structlog

from cardwatch.core.exceptions import SiteNotRegistered
from cardwatch.scrapers.base import SiteAdapter


logger = structlog.get_logger(__name__)


class SiteRegistry:
    """Holds one SiteAdapter per marketplace, in registration order.

    Registration order is the order sites are visited during a run.
    """

    def __init__(self):
        self._adapters: Dict[str, SiteAdapter] = {}

    def register(self, adapter: SiteAdapter) -> None:
        """Register an adapter under its site id.

        Args:
            adapter: SiteAdapter to register; replaces any previous one
        """
        if not isinstance(adapter, SiteAdapter):
            raise ValueError(f"Expected a SiteAdapter, got: {adapter!r}")

        site_id = adapter.site_id.lower()
        if site_id in self._adapters:
            logger.warning("adapter_replaced", site=site_id)
        self._adapters[site_id] = adapter
        logger.debug("adapter_registered", site=site_id, name=adapter.name)

    def get(self, site_id: str) -> SiteAdapter:
        """Look up an adapter.

        Raises:
            SiteNotRegistered: If no adapter is registered for site_id
        """
        adapter = self._adapters.get(site_id.lower())
        if adapter is None:
            raise SiteNotRegistered(site_id)
        return adapter

    def find(self, site_id: str) -> Optional[SiteAdapter]:
        return self._adapters.get(site_id.lower())

    def site_ids(self) -> List[str]:
        return list(self._adapters.keys())

    def adapters(self, only: Optional[Iterable[str]] = None) -> List[SiteAdapter]:
        """Return adapters in registration order.

        Args:
            only: Optional site ids to keep; unknown ids are logged and skipped

        Returns:
            List of SiteAdapter
        """
        if not only:
            return list(self._adapters.values())

        wanted = [site_id.lower() for site_id in only]
        for site_id in wanted:
            if site_id not in self._adapters:
                logger.warning("enabled_site_not_registered", site=site_id)
        return [adapter for key, adapter in self._adapters.items() if key in wanted]

    def __contains__(self, site_id: str) -> bool:
        return site_id.lower() in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)
