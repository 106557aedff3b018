"""Request Rate Tracker: per-identity sliding-window request and repetition counts."""

import hashlib
import logging
import threading
import time
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateSnapshot:
    """Counts inside the window, including the request just recorded."""

    request_count: int
    repeat_count: int


def _digest(query: str) -> str:
    return hashlib.sha256(query.encode("utf-8")).hexdigest()


class RequestRateTracker:
    """
    In-memory sliding window of (timestamp, query digest) per identity.

    Unlike a rate limiter it never refuses anything; it only reports how busy
    and how repetitive an identity has been so the threat classifier can turn
    that into behavioral risk.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window = window_seconds
        self._clock = clock
        self.requests: dict[str, deque[tuple[float, str]]] = defaultdict(deque)
        self._lock = threading.Lock()

    def _prune_locked(self, identity: str, now: float) -> deque[tuple[float, str]]:
        entries = self.requests[identity]
        while entries and now - entries[0][0] >= self.window:
            entries.popleft()
        return entries

    def record(self, identity: str, query: str) -> RateSnapshot:
        """Record a request and return the window counts for the identity."""
        now = self._clock()
        digest = _digest(query)
        with self._lock:
            entries = self._prune_locked(identity, now)
            entries.append((now, digest))
            snapshot = RateSnapshot(
                request_count=len(entries),
                repeat_count=sum(1 for _, d in entries if d == digest),
            )
            self._evict_expired_identities(now)
        return snapshot

    def get_stats(self, identity: str) -> dict[str, int]:
        """Get window statistics for an identity"""
        now = self._clock()
        with self._lock:
            if identity not in self.requests:
                return {"recent_requests": 0, "distinct_queries": 0}
            entries = self._prune_locked(identity, now)
            return {
                "recent_requests": len(entries),
                "distinct_queries": len({d for _, d in entries}),
            }

    def reset_identity(self, identity: str) -> None:
        with self._lock:
            self.requests.pop(identity, None)
        logger.info("Rate history for identity %s reset", identity)

    def _evict_expired_identities(self, now: float) -> None:
        """Drop identities with no request inside the window to bound map size."""
        for identity in list(self.requests.keys()):
            entries = self.requests[identity]
            if not entries or now - entries[-1][0] >= self.window:
                del self.requests[identity]

    def __len__(self) -> int:
        return len(self.requests)
