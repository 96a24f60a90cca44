"""Alert formatting and delivery.

Delivery failures are reported as False, never raised: the orchestrator
simply does not record the listing, so it is retried on the next run.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from cardwatch.models.watched_item import WatchedItem
from cardwatch.scrapers.base import Listing

logger = structlog.get_logger(__name__)


# Discord rejects message content longer than this
DISCORD_CONTENT_LIMIT = 2000


@dataclass(frozen=True)
class AlertMessage:
    """A rendered alert plus the facts it was built from."""

    content: str
    site: str
    url: str
    title: str
    item_name: str
    price_amount: Optional[Decimal]
    price_ceiling: Decimal


def format_price(amount: Optional[Decimal], fallback: str = "") -> str:
    """Render an amount the French way: 1234.5 -> "1234,50 €"."""
    if amount is None:
        return fallback or "prix inconnu"
    return f"{amount:.2f}".replace(".", ",") + " €"


def format_alert(item: WatchedItem, listing: Listing, site_name: Optional[str] = None) -> AlertMessage:
    """Build the alert sent when a listing qualifies for a watched item.

    Args:
        item: Watched item the listing matched
        listing: Qualifying listing
        site_name: Display name of the site; defaults to the site id

    Returns:
        AlertMessage ready for any sink
    """
    price = format_price(listing.price_amount, listing.price_text)
    ceiling = format_price(Decimal(item.price_ceiling))
    lines = [
        f"🎯 **{item.display_name}** - {price} (max: {ceiling})",
        f"📱 **Site:** {site_name or listing.site}",
        f"🔗 **Lien:** {listing.url}",
        f"📝 **Titre:** {listing.title}",
    ]
    content = "\n".join(lines)
    if len(content) > DISCORD_CONTENT_LIMIT:
        content = content[: DISCORD_CONTENT_LIMIT - 1] + "…"

    return AlertMessage(
        content=content,
        site=listing.site,
        url=listing.url,
        title=listing.title,
        item_name=item.display_name,
        price_amount=listing.price_amount,
        price_ceiling=Decimal(item.price_ceiling),
    )


class NotificationSink(ABC):
    """Destination for alerts."""

    @abstractmethod
    async def send(self, message: AlertMessage) -> bool:
        """Deliver one alert.

        Returns:
            True if delivered, False otherwise
        """

    async def close(self) -> None:
        """Release resources held by the sink."""


class DryRunSink(NotificationSink):
    """Logs alerts instead of sending them and reports success."""

    def __init__(self):
        self.sent: List[AlertMessage] = []
        self.logger = logger.bind(service="dry_run_sink")

    async def send(self, message: AlertMessage) -> bool:
        self.sent.append(message)
        self.logger.info(
            "dry_run_alert",
            site=message.site,
            url=message.url,
            item=message.item_name,
            content=message.content,
        )
        return True


class _RetryableStatus(Exception):
    """HTTP status worth retrying (rate limited or server side)."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, _RetryableStatus))


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "discord_webhook_retrying",
        attempt=retry_state.attempt_number,
        error=str(exc),
    )


class DiscordWebhookSink(NotificationSink):
    """Posts alerts to a Discord channel webhook.

    Transport errors, HTTP 429 and 5xx answers are retried with exponential
    backoff; other 4xx answers fail immediately.
    """

    def __init__(
        self,
        webhook_url: str,
        username: str = "Card Watch",
        mention: str = "",
        timeout_seconds: float = 15.0,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the sink.

        Args:
            webhook_url: Discord webhook URL; alerts are skipped when empty
            username: Name the webhook posts under
            mention: Optional prefix such as "<@&role_id>"
            timeout_seconds: Per-request timeout
            max_attempts: Attempts per alert, including the first
            backoff_seconds: Backoff multiplier between attempts
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.webhook_url = webhook_url
        self.username = username
        self.mention = mention
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._client = client
        self.logger = logger.bind(service="discord_sink")

    def _payload(self, message: AlertMessage) -> dict:
        content = message.content
        if self.mention:
            content = f"{self.mention} {content}"[:DISCORD_CONTENT_LIMIT]
        return {"content": content, "username": self.username}

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=30),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await client.post(self.webhook_url, json=payload)
                if response.status_code == 429 or response.status_code >= 500:
                    raise _RetryableStatus(response.status_code)
                response.raise_for_status()

    async def send(self, message: AlertMessage) -> bool:
        if not self.webhook_url:
            self.logger.warning("discord_webhook_not_configured", url=message.url)
            return False

        payload = self._payload(message)
        try:
            if self._client is not None:
                await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    await self._post(client, payload)
        except (httpx.HTTPError, _RetryableStatus, RetryError) as e:
            self.logger.error(
                "discord_webhook_failed",
                site=message.site,
                url=message.url,
                error=str(e),
            )
            return False

        self.logger.info("discord_alert_sent", site=message.site, url=message.url)
        return True
