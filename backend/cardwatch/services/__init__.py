"""Persistence and delivery services used by the scrape orchestrator."""

from cardwatch.services.dedup_store import DeduplicationStore
from cardwatch.services.notifier import (
    AlertMessage,
    DiscordWebhookSink,
    DryRunSink,
    NotificationSink,
    format_alert,
)
from cardwatch.services.run_log import RunLogService
from cardwatch.services.watchlist import WatchListService

__all__ = [
    "DeduplicationStore",
    "RunLogService",
    "WatchListService",
    "NotificationSink",
    "DiscordWebhookSink",
    "DryRunSink",
    "AlertMessage",
    "format_alert",
]
