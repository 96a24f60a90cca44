"""Scrape run audit log."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class ScrapeRunLog(UUIDPrimaryKeyMixin, Base):
    """Append-only record of one (watched item x site) attempt.

    Rows are never updated. A failure outside any (item, site) pair is
    recorded with site "*" and no watched item.
    """

    __tablename__ = "scrape_run_logs"

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    watched_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("watched_items.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    site: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="Status: 'success', 'no_results', 'error'",
    )
    result_count: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Listings extracted from the page",
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<ScrapeRunLog(site='{self.site}', status='{self.status}', results={self.result_count})>"
