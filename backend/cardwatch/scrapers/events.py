"""Progress events emitted while a scrape run executes.

Consumers (a live dashboard, the CLI) subscribe to an EventBus. A broken
listener is logged and dropped from that emission, never allowed to stop
the run.
"""

import asyncio
import inspect
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import structlog

from cardwatch.models.base import utcnow

logger = structlog.get_logger(__name__)


class EventKind(str, Enum):
    RUN_START = "run-start"
    ITEM_START = "item-start"
    SITE_START = "site-start"
    SITE_SUCCESS = "site-success"
    SITE_NO_RESULTS = "site-no-results"
    SITE_ERROR = "site-error"
    NOTIFICATION_SENDING = "notification-sending"
    NOTIFICATION_SENT = "notification-sent"
    ITEM_DELAY = "item-delay"
    RUN_COMPLETE = "run-complete"
    RUN_ERROR = "run-error"


@dataclass(frozen=True)
class ProgressEvent:
    """One step of a run. Fields not relevant to the kind stay None."""

    kind: EventKind
    item_id: Optional[str] = None
    item_name: Optional[str] = None
    site: Optional[str] = None
    item_index: Optional[int] = None
    item_count: Optional[int] = None
    result_count: Optional[int] = None
    alert_count: Optional[int] = None
    delay_ms: Optional[float] = None
    error: Optional[str] = None
    listing_title: Optional[str] = None
    listing_url: Optional[str] = None
    listing_price: Optional[Decimal] = None
    recorded: Optional[bool] = None
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly dict without the unset fields."""
        data = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, datetime):
                value = value.isoformat()
            data[key] = value
        return data


Listener = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class EventBus:
    """Fan-out of progress events to registered listeners.

    Listeners may be plain callables or coroutine functions; they run in
    subscription order.
    """

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener.

        Returns:
            Callable that removes the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def emit(self, event: ProgressEvent) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(
                    "event_listener_failed",
                    kind=event.kind.value,
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e),
                )


class EventChannel:
    """Queue-backed listener for a single consumer (e.g. a websocket push loop).

    Subscribe it to a bus with ``bus.subscribe(channel.put)``. When the queue
    is bounded and full, the oldest event is dropped.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: "asyncio.Queue[ProgressEvent]" = asyncio.Queue(maxsize=maxsize)

    def put(self, event: ProgressEvent) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            logger.debug("event_channel_dropped_oldest")
        self._queue.put_nowait(event)

    async def get(self) -> ProgressEvent:
        return await self._queue.get()

    def get_nowait(self) -> Optional[ProgressEvent]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> List[ProgressEvent]:
        events = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        return events

    def __len__(self) -> int:
        return self._queue.qsize()
