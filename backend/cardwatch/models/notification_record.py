"""NotificationRecord model: the persisted set of listing URLs already alerted on."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from cardwatch.models.base import Base, UUIDPrimaryKeyMixin, utcnow


class NotificationRecord(UUIDPrimaryKeyMixin, Base):
    """One row per listing URL that produced a notification.

    The url is globally unique: a listing never re-triggers, even when a
    different watched item matches it later.
    """

    __tablename__ = "notification_records"

    site: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    url: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
        unique=True,
        comment="Canonical listing URL, the deduplication key",
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    price_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    watched_item_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("watched_items.id", ondelete="SET NULL"),
        nullable=True,
        comment="Watched item that first matched; informational only",
    )

    def __repr__(self) -> str:
        return f"<NotificationRecord(site='{self.site}', url='{self.url}', sent_at={self.sent_at})>"
