"""
Deduplication and rate limiting for metadata publications.

Upstream encoders repeat the same comment packet every few seconds. The
limiter publishes the first record unconditionally and afterwards only
records whose rendered form has not been seen recently, no more often
than once per minimum interval.
"""

import time
from enum import Enum
from typing import Callable, Dict, Optional, Set, Tuple

DEFAULT_MIN_INTERVAL = 5.0
DEFAULT_SEEN_LIMIT = 100


class DedupState(str, Enum):
    """Limiter states."""

    NO_METADATA_YET = "no_metadata_yet"
    HAS_METADATA = "has_metadata"


class DedupRateLimiter:
    """Decides whether a freshly changed, complete record is published.

    The seen set is a bounded recency filter, not a history: once it
    grows past ``seen_limit`` it is cleared, after which a previously
    seen value may be published again.
    """

    def __init__(
        self,
        min_interval: float = DEFAULT_MIN_INTERVAL,
        seen_limit: int = DEFAULT_SEEN_LIMIT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the limiter.

        Args:
            min_interval: Minimum seconds between two publications
            seen_limit: Seen set is cleared once it holds more entries
            clock: Monotonic time source in seconds
        """
        self.min_interval = min_interval
        self.seen_limit = seen_limit
        self._clock = clock
        self._state = DedupState.NO_METADATA_YET
        self._seen: Set[str] = set()
        self._last_emit: Optional[float] = None
        self._emitted = 0
        self._suppressed = 0

    @property
    def state(self) -> DedupState:
        return self._state

    def can_emit(self, display: str) -> Tuple[bool, Optional[str]]:
        """
        Check whether a record with this rendered form may be published.

        Args:
            display: Rendered record

        Returns:
            Tuple of (can_emit: bool, reason: Optional[str])
            If can_emit is False, reason explains why.
        """
        if self._state is DedupState.NO_METADATA_YET:
            return True, None

        if display in self._seen:
            return False, "Already published"

        elapsed = self._clock() - self._last_emit
        if elapsed < self.min_interval:
            return False, f"Rate limit: {self.min_interval - elapsed:.1f}s remaining"

        return True, None

    def record_emitted(self, display: str) -> None:
        """Record that a record with this rendered form was published."""
        self._seen.add(display)
        self._last_emit = self._clock()
        self._emitted += 1

        if self._state is DedupState.NO_METADATA_YET:
            self._state = DedupState.HAS_METADATA
        elif len(self._seen) > self.seen_limit:
            self._seen.clear()

    def offer(self, display: str) -> bool:
        """Check and, when allowed, record a publication in one step.

        Returns:
            True if the record should be published
        """
        allowed, _ = self.can_emit(display)
        if allowed:
            self.record_emitted(display)
        else:
            self._suppressed += 1
        return allowed

    def get_stats(self) -> Dict[str, int]:
        """
        Get limiter statistics.

        Returns:
            Dictionary with 'seen', 'emitted' and 'suppressed' counts
        """
        return {
            "seen": len(self._seen),
            "emitted": self._emitted,
            "suppressed": self._suppressed,
        }

    def reset(self) -> None:
        """Forget everything and return to the initial state."""
        self._state = DedupState.NO_METADATA_YET
        self._seen.clear()
        self._last_emit = None
        self._emitted = 0
        self._suppressed = 0
