"""Persistent record of listing URLs that already produced a notification.

The unique constraint on notification_records.url is the at-most-once
guarantee. has_notified() is only a shortcut that avoids a webhook call; if
two writers race past it, the second insert is rejected and reported as
"already recorded". Any other rejected insert is a PersistenceError.
"""

import uuid
from decimal import Decimal
from typing import List, Optional

import structlog
from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardwatch.core.exceptions import DedupStoreUnavailable, PersistenceError
from cardwatch.models.notification_record import NotificationRecord

logger = structlog.get_logger(__name__)


class DeduplicationStore:
    """Notification history backed by the notification_records table.

    Each operation opens its own session so the store can be shared by the
    orchestrator and administrative callers.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the store.

        Args:
            db_session_factory: Async session factory for database access
        """
        self.db_session_factory = db_session_factory
        self.logger = logger.bind(service="dedup_store")

    async def ping(self) -> None:
        """Check the store is reachable.

        Raises:
            DedupStoreUnavailable: If the database cannot be queried
        """
        try:
            async with self.db_session_factory() as db:
                await db.execute(text("SELECT 1"))
                await db.execute(select(NotificationRecord.id).limit(1))
        except SQLAlchemyError as e:
            self.logger.error("dedup_store_unreachable", error=str(e))
            raise DedupStoreUnavailable(str(e)) from e

    async def has_notified(self, url: str) -> bool:
        async with self.db_session_factory() as db:
            stmt = select(NotificationRecord.id).where(NotificationRecord.url == url).limit(1)
            result = await db.execute(stmt)
            return result.scalar_one_or_none() is not None

    async def record_notification(
        self,
        site: str,
        url: str,
        title: str,
        amount: Optional[Decimal],
        watched_item_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Insert a notification record.

        Args:
            site: Site id the listing came from
            url: Canonical listing URL
            title: Listing title at notification time
            amount: Parsed price, if any
            watched_item_id: Watched item that matched the listing

        Returns:
            True if the row was inserted, False if the url was already recorded

        Raises:
            PersistenceError: On any database failure other than the duplicate url
        """
        async with self.db_session_factory() as db:
            db.add(
                NotificationRecord(
                    site=site,
                    url=url,
                    title=title,
                    price_amount=amount,
                    watched_item_id=watched_item_id,
                )
            )
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                # Other constraints (foreign key, not null) fail the same way
                if await self.has_notified(url):
                    self.logger.info("notification_already_recorded", site=site, url=url)
                    return False
                self.logger.error("notification_record_failed", site=site, url=url, error=str(e))
                raise PersistenceError(f"Could not record notification for {url}: {e}") from e
            except SQLAlchemyError as e:
                await db.rollback()
                self.logger.error("notification_record_failed", site=site, url=url, error=str(e))
                raise PersistenceError(f"Could not record notification for {url}: {e}") from e

        self.logger.debug("notification_recorded", site=site, url=url)
        return True

    async def forget(self, url: str) -> bool:
        """Delete the record for one url so it can notify again.

        Returns:
            True if a record was deleted
        """
        async with self.db_session_factory() as db:
            result = await db.execute(
                delete(NotificationRecord).where(NotificationRecord.url == url)
            )
            await db.commit()
        deleted = (result.rowcount or 0) > 0
        self.logger.info("notification_forgotten", url=url, deleted=deleted)
        return deleted

    async def reset(self) -> int:
        """Delete every record.

        Returns:
            Number of deleted records
        """
        async with self.db_session_factory() as db:
            result = await db.execute(delete(NotificationRecord))
            await db.commit()
        count = result.rowcount or 0
        self.logger.warning("notification_history_reset", deleted=count)
        return count

    async def recent(self, limit: int = 50) -> List[NotificationRecord]:
        """Most recent records first."""
        async with self.db_session_factory() as db:
            stmt = (
                select(NotificationRecord)
                .order_by(NotificationRecord.sent_at.desc())
                .limit(limit)
            )
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db_session_factory() as db:
            result = await db.execute(select(func.count()).select_from(NotificationRecord))
            return result.scalar_one()
