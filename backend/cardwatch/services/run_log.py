"""Append-only audit log of scrape attempts."""

import uuid
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from cardwatch.models.scrape_run_log import ScrapeRunLog

logger = structlog.get_logger(__name__)


STATUS_SUCCESS = "success"
STATUS_NO_RESULTS = "no_results"
STATUS_ERROR = "error"

# Site marker for failures that happen outside any (item, site) pair
RUN_SCOPE_SITE = "*"


class RunLogService:
    """Writes one ScrapeRunLog row per (watched item x site) attempt.

    Writes never raise: a lost audit row must not abort a run.
    """

    def __init__(self, db_session_factory: async_sessionmaker[AsyncSession]):
        self.db_session_factory = db_session_factory
        self.logger = logger.bind(service="run_log")

    async def record(
        self,
        site: str,
        status: str,
        result_count: int = 0,
        duration_ms: int = 0,
        watched_item_id: Optional[uuid.UUID] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Append one row.

        Args:
            site: Site id, or "*" for run-level failures
            status: "success", "no_results" or "error"
            result_count: Listings extracted from the page
            duration_ms: Time spent on the attempt
            watched_item_id: Watched item scraped, if any
            error_message: Error text for failed attempts, or the last
                per-listing failure of a successful one

        Returns:
            True if written, False if the write failed (logged)
        """
        try:
            async with self.db_session_factory() as db:
                db.add(
                    ScrapeRunLog(
                        watched_item_id=watched_item_id,
                        site=site,
                        status=status,
                        result_count=result_count,
                        duration_ms=duration_ms,
                        error_message=error_message,
                    )
                )
                await db.commit()
        except SQLAlchemyError as e:
            self.logger.error(
                "run_log_write_failed",
                site=site,
                status=status,
                error=str(e),
            )
            return False
        return True

    async def recent(
        self,
        limit: int = 100,
        watched_item_id: Optional[uuid.UUID] = None,
    ) -> List[ScrapeRunLog]:
        """Most recent rows first, optionally for one watched item."""
        async with self.db_session_factory() as db:
            stmt = select(ScrapeRunLog)
            if watched_item_id is not None:
                stmt = stmt.where(ScrapeRunLog.watched_item_id == watched_item_id)
            stmt = stmt.order_by(ScrapeRunLog.created_at.desc()).limit(limit)
            result = await db.execute(stmt)
            return list(result.scalars().all())
