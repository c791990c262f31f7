"""Canonical metadata slot and live fan-out to subscribers."""

import asyncio
import itertools
import logging
from typing import Dict, Optional, Union

from .models import MetadataRecord

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class _NotAvailable:
    """Sentinel delivered to a new subscriber when nothing was published yet."""

    def __repr__(self) -> str:
        return "NOT_AVAILABLE"

    def __bool__(self) -> bool:
        return False


NOT_AVAILABLE = _NotAvailable()

FeedItem = Union[MetadataRecord, _NotAvailable]


class Subscription:
    """A live view of the distributor.

    The first item is the snapshot taken when subscribing (or
    NOT_AVAILABLE), followed by every later publication. Use it as an
    async context manager so it is removed from the distributor when the
    consumer goes away.
    """

    def __init__(self, distributor: "Distributor", subscriber_id: int, queue: asyncio.Queue):
        self.distributor = distributor
        self.subscriber_id = subscriber_id
        self._queue = queue
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of items waiting to be consumed."""
        return self._queue.qsize()

    async def get(self, timeout: Optional[float] = None) -> FeedItem:
        """Wait for the next item.

        Args:
            timeout: Seconds to wait, or None to wait forever

        Returns:
            Next MetadataRecord, or NOT_AVAILABLE as a first item

        Raises:
            asyncio.TimeoutError: If nothing arrived within ``timeout``
        """
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout)

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self.distributor._unsubscribe(self.subscriber_id)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> FeedItem:
        if self._closed:
            raise StopAsyncIteration
        return await self.get()


class Distributor:
    """Holds the latest published record and broadcasts new ones.

    Publishing never waits for subscribers. Each subscriber has its own
    bounded queue; when it is full the oldest queued item is dropped, so
    a slow consumer only loses its own backlog.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        """Initialize the distributor.

        Args:
            queue_size: Maximum number of undelivered items per subscriber
        """
        self.queue_size = queue_size
        self._current: Optional[MetadataRecord] = None
        self._subscribers: Dict[int, asyncio.Queue] = {}
        self._ids = itertools.count(1)
        self._published = 0
        self._dropped = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def read_current(self) -> Optional[MetadataRecord]:
        """Return the canonical record, or None if nothing was published."""
        return self._current

    def publish(self, record: MetadataRecord) -> None:
        """Store a snapshot of ``record`` and send it to every subscriber.

        Args:
            record: Record to publish; later changes to it are not seen
        """
        snapshot = record.copy()
        self._current = snapshot
        self._published += 1

        for queue in list(self._subscribers.values()):
            self._deliver(queue, snapshot)

        logger.debug(f"Published to {len(self._subscribers)} subscriber(s)")

    def subscribe(self) -> Subscription:
        """Create a subscription whose first item is the current snapshot."""
        subscriber_id = next(self._ids)
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        queue.put_nowait(self._current if self._current is not None else NOT_AVAILABLE)
        self._subscribers[subscriber_id] = queue

        logger.debug(f"Subscriber {subscriber_id} joined ({len(self._subscribers)} active)")
        return Subscription(self, subscriber_id, queue)

    def _unsubscribe(self, subscriber_id: int) -> None:
        if self._subscribers.pop(subscriber_id, None) is not None:
            logger.debug(f"Subscriber {subscriber_id} left ({len(self._subscribers)} active)")

    def _deliver(self, queue: asyncio.Queue, item: FeedItem) -> None:
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            queue.get_nowait()
            self._dropped += 1
            queue.put_nowait(item)

    def get_stats(self) -> Dict[str, int]:
        """
        Get distributor statistics.

        Returns:
            Dictionary with 'published', 'dropped' and 'subscribers'
        """
        return {
            "published": self._published,
            "dropped": self._dropped,
            "subscribers": len(self._subscribers),
        }
