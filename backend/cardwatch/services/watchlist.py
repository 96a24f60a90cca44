"""Read access to the operator's watched items."""

import uuid
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardwatch.core.exceptions import WatchListUnavailable
from cardwatch.models.watched_item import WatchedItem

logger = structlog.get_logger(__name__)


class WatchListService:
    """Loads watched items. The admin surface owns writes."""

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]):
        self.db_session_factory = db_session_factory
        self.logger = logger.bind(service="watchlist")

    async def get_active_items(self) -> List[WatchedItem]:
        """Active watched items, oldest first.

        Raises:
            WatchListUnavailable: If the table cannot be read
        """
        try:
            async with self.db_session_factory() as db:
                stmt = (
                    select(WatchedItem)
                    .where(WatchedItem.is_active == True)
                    .order_by(WatchedItem.created_at.asc())
                )
                result = await db.execute(stmt)
                items = list(result.scalars().all())
        except SQLAlchemyError as e:
            self.logger.error("watchlist_load_failed", error=str(e))
            raise WatchListUnavailable(str(e)) from e

        self.logger.debug("watchlist_loaded", count=len(items))
        return items

    async def get_item(self, item_id: uuid.UUID) -> Optional[WatchedItem]:
        try:
            async with self.db_session_factory() as db:
                return await db.get(WatchedItem, item_id)
        except SQLAlchemyError as e:
            self.logger.error("watchlist_item_load_failed", item_id=str(item_id), error=str(e))
            raise WatchListUnavailable(str(e)) from e
