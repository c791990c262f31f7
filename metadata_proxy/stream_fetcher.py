"""Upstream stream ingestion and the supervising reconnect loop.

The fetcher turns raw stream chunks into published metadata; the
supervisor keeps a fetch running for the lifetime of the process.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

import httpx

from .dedup import DedupRateLimiter
from .distributor import Distributor
from .models import MetadataRecord
from .vorbis import SIGNATURE_LENGTH, CommentBlockParser, find_comment_offsets

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_WINDOW = 16384
DEFAULT_RETRY_DELAY = 5.0
USER_AGENT = "metadata-proxy/1.0"


class StreamFetcher:
    """Scans an accumulating byte buffer for comment packets.

    Every byte is scanned once: each pass starts where the previous one
    ended (backed up so a signature split across chunks is still found),
    and packets that were cut off by the end of the buffer are decoded
    again on the next pass.

    Each packet is decoded into a copy of the last accepted record, so
    ``record`` only ever holds content that was published. A packet is
    offered once it has been decoded to its end. A packet that never
    completes, such as one larger than the buffer window, is offered
    with the entries that did arrive when it is given up. Open packets
    that precede a whole later packet are dropped without an offer.
    """

    def __init__(
        self,
        stream_url: str,
        distributor: Distributor,
        limiter: Optional[DedupRateLimiter] = None,
        parser: Optional[CommentBlockParser] = None,
        buffer_window: int = DEFAULT_BUFFER_WINDOW,
    ):
        """Initialize the fetcher.

        Args:
            stream_url: Upstream Ogg/Vorbis stream URL
            distributor: Where accepted records are published
            limiter: Deduplication policy
            parser: Comment packet decoder
            buffer_window: Bytes kept after each scan pass
        """
        self.stream_url = stream_url
        self.distributor = distributor
        self.limiter = limiter or DedupRateLimiter()
        self.parser = parser or CommentBlockParser()
        self.buffer_window = buffer_window
        self.record = MetadataRecord()

        self._buffer = bytearray()
        self._scanned = 0
        # offset -> entries decoded so far from a packet that is still incomplete
        self._pending: Dict[int, List[Tuple[str, str]]] = {}

    @property
    def buffer_size(self) -> int:
        return len(self._buffer)

    def reset(self) -> List[MetadataRecord]:
        """Drop buffered bytes before a new connection.

        Incomplete packets are given up first. The accepted record and
        the limiter are kept so a reconnect does not republish unchanged
        metadata.

        Returns:
            Snapshots published while giving up incomplete packets
        """
        published = self._abandon(list(self._pending.values()))
        self._buffer.clear()
        self._scanned = 0
        self._pending.clear()
        return published

    def feed(self, chunk: bytes) -> List[MetadataRecord]:
        """Append a chunk and process every packet it completes.

        Args:
            chunk: Bytes received from upstream

        Returns:
            Snapshots of the records published during this pass
        """
        self._buffer.extend(chunk)
        scan_start = max(0, self._scanned - (SIGNATURE_LENGTH - 1))

        offsets = list(self._pending) + find_comment_offsets(self._buffer, scan_start)
        pending: Dict[int, List[Tuple[str, str]]] = {}
        published = []

        for offset in offsets:
            candidate = self.record.copy()
            result = self.parser.parse(self._buffer, offset, candidate)

            if not result.complete:
                pending[offset] = result.comments
                continue

            if pending and result.valid:
                # Packets still open before a whole later one are broken and older
                logger.debug(f"Dropped {len(pending)} incomplete packet(s) before offset {offset}")
                pending.clear()

            if result.changed and self._offer(candidate):
                published.append(self.distributor.read_current())

        self._pending = pending
        self._scanned = len(self._buffer)
        published += self._truncate()
        return published

    def _offer(self, candidate: MetadataRecord) -> bool:
        if not candidate.is_complete():
            return False

        display = candidate.render()
        if not self.limiter.offer(display):
            logger.debug(f"Suppressed metadata update: {display}")
            return False

        logger.info(f"Now playing: {display}")
        self.record = candidate
        self.distributor.publish(candidate)
        return True

    def _abandon(self, packets: List[List[Tuple[str, str]]]) -> List[MetadataRecord]:
        published = []
        for comments in packets:
            candidate = self.record.copy()
            changed = False
            for key, value in comments:
                changed = candidate.apply(key, value) or changed

            if changed and self._offer(candidate):
                published.append(self.distributor.read_current())
        return published

    def _truncate(self) -> List[MetadataRecord]:
        excess = len(self._buffer) - self.buffer_window
        if excess <= 0:
            return []

        del self._buffer[:excess]
        self._scanned -= excess

        lost = [self._pending.pop(offset) for offset in sorted(self._pending) if offset < excess]
        if lost:
            logger.debug(f"Gave up {len(lost)} incomplete packet(s) outside the buffer window")
        self._pending = {offset - excess: comments for offset, comments in self._pending.items()}
        return self._abandon(lost)

    async def fetch(
        self,
        client: httpx.AsyncClient,
        on_connected: Optional[Callable[[], None]] = None,
    ) -> None:
        """Stream the upstream URL and feed every chunk.

        Returns when the upstream closes the stream.

        Args:
            client: HTTP client to stream with
            on_connected: Called once the response headers arrived

        Raises:
            httpx.HTTPError: On connection, protocol or HTTP status errors
        """
        async with client.stream("GET", self.stream_url) as response:
            response.raise_for_status()
            if on_connected:
                on_connected()

            async for chunk in response.aiter_bytes():
                self.feed(chunk)


class SupervisorState(str, Enum):
    """Supervisor lifecycle states."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    FAILED = "failed"
    STOPPED = "stopped"


class Supervisor:
    """Keeps a StreamFetcher running, reconnecting after a fixed delay.

    Connecting -> Streaming -> Failed -> (delay) -> Connecting, with no
    retry limit. The loop ends when stop() is called or its task is
    cancelled.
    """

    def __init__(
        self,
        fetcher: StreamFetcher,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        connect_timeout: float = 10.0,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ):
        """Initialize the supervisor.

        Args:
            fetcher: Fetcher to drive
            retry_delay: Seconds to wait before reconnecting
            connect_timeout: Connect timeout for the default HTTP client
            client_factory: Builds the HTTP client for each attempt
        """
        self.fetcher = fetcher
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory or self._default_client

        self.state = SupervisorState.STOPPED
        self.attempts = 0
        self.last_error: Optional[str] = None
        self.last_connected: Optional[datetime] = None
        self._stop_event = asyncio.Event()

    def _default_client(self) -> httpx.AsyncClient:
        # Reads on a live stream may legitimately stall; only bound connecting
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.connect_timeout, read=None),
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT},
        )

    def _on_connected(self) -> None:
        self.state = SupervisorState.STREAMING
        self.last_connected = datetime.now()
        logger.info("Connected to stream, listening for metadata updates...")

    def stop(self) -> None:
        """Ask the loop to finish after the current wait."""
        self._stop_event.set()

    async def run(self) -> None:
        """Run fetch attempts until stopped or cancelled."""
        logger.info(f"Starting stream supervisor for {self.fetcher.stream_url}")

        try:
            while not self._stop_event.is_set():
                await self._attempt()

                self.state = SupervisorState.FAILED
                logger.info(f"Retrying in {self.retry_delay:g} seconds...")
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.retry_delay)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Stream supervisor cancelled")
            raise
        finally:
            self.state = SupervisorState.STOPPED

        logger.info("Stream supervisor stopped")

    async def _attempt(self) -> None:
        self.state = SupervisorState.CONNECTING
        self.attempts += 1
        self.fetcher.reset()
        logger.info(f"Connecting to stream (attempt {self.attempts})...")

        try:
            async with self._client_factory() as client:
                await self.fetcher.fetch(client, on_connected=self._on_connected)
            self.last_error = "Stream ended"
            logger.warning("Upstream stream ended")
        except httpx.HTTPError as e:
            self.last_error = str(e) or type(e).__name__
            logger.error(f"Stream processor error: {self.last_error}")
        except OSError as e:
            self.last_error = str(e)
            logger.error(f"Stream I/O error: {e}")
        except Exception as e:
            self.last_error = str(e)
            logger.error(f"Unexpected error in stream pipeline: {e}", exc_info=True)

    def get_status(self) -> Dict:
        """Get supervisor status.

        Returns:
            dict: State, attempt count, last error and last connect time.
        """
        return {
            "state": self.state.value,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "last_connected": self.last_connected.isoformat() if self.last_connected else None,
            "buffer_bytes": self.fetcher.buffer_size,
        }
