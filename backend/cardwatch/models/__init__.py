"""SQLAlchemy models for card-watch.

All models are imported here so metadata.create_all sees every table.
"""

from cardwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from cardwatch.models.watched_item import WatchedItem
from cardwatch.models.notification_record import NotificationRecord
from cardwatch.models.scrape_run_log import ScrapeRunLog

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "WatchedItem",
    "NotificationRecord",
    "ScrapeRunLog",
]
