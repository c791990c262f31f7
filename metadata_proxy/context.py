"""Shared service state, built once and handed to the pipeline and the API."""

from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .config import Config
from .dedup import DedupRateLimiter
from .distributor import Distributor
from .stream_fetcher import StreamFetcher, Supervisor


@dataclass
class AppContext:
    """Everything the HTTP layer and the background pipeline share."""

    config: Config
    distributor: Distributor
    fetcher: StreamFetcher
    supervisor: Supervisor

    @classmethod
    def from_config(
        cls,
        config: Config,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
    ) -> "AppContext":
        """Wire up the pipeline from configuration.

        Args:
            config: Service configuration
            client_factory: Optional HTTP client factory for the supervisor

        Returns:
            AppContext: Ready to run context.
        """
        distributor = Distributor(queue_size=config.subscriber_queue_size)
        limiter = DedupRateLimiter(
            min_interval=config.min_emit_interval_seconds,
            seen_limit=config.seen_limit,
        )
        fetcher = StreamFetcher(
            stream_url=config.stream_url,
            distributor=distributor,
            limiter=limiter,
            buffer_window=config.buffer_window_bytes,
        )
        supervisor = Supervisor(
            fetcher,
            retry_delay=config.retry_delay_seconds,
            connect_timeout=config.connect_timeout_seconds,
            client_factory=client_factory,
        )
        return cls(
            config=config,
            distributor=distributor,
            fetcher=fetcher,
            supervisor=supervisor,
        )
