"""
Per-subscription transaction deduplication.

File: mempool_engine/mempool/dedup.py
"""

import logging
from collections import OrderedDict
from typing import Callable, Optional

from ..utils import monotonic_ms
from .models import SubscriptionStats

logger = logging.getLogger(__name__)


class Deduplicator:
    """
    Time-windowed "seen" set keyed by transaction hash.

    Entries older than ttl_ms are pruned on every accepted hash rather than
    by a background sweep, so memory follows arrival rate x TTL. A hard cap
    (max_entries) can be set on top; when it evicts, the oldest hashes may be
    delivered again even though they're still inside the window.
    """

    def __init__(
        self,
        ttl_ms: float,
        stats: Optional[SubscriptionStats] = None,
        clock: Callable[[], float] = monotonic_ms,
        max_entries: Optional[int] = None,
    ):
        self.ttl_ms = ttl_ms
        self.stats = stats if stats is not None else SubscriptionStats()
        self.clock = clock
        self.max_entries = max_entries
        # hash -> last seen (ms), oldest first
        self._seen: "OrderedDict[str, float]" = OrderedDict()

    def should_process(self, tx_hash: str) -> bool:
        """
        Decide whether a hash is new within the window.

        Repeats inside the window bump stats.dropped and return False.
        """
        key = tx_hash.lower()
        now = self.clock()

        seen_at = self._seen.get(key)
        if seen_at is not None and now - seen_at < self.ttl_ms:
            self.stats.dropped += 1
            return False

        self._seen[key] = now
        self._seen.move_to_end(key)
        self._prune(now)
        return True

    def _prune(self, now: float) -> None:
        threshold = now - self.ttl_ms
        while self._seen:
            oldest_hash, seen_at = next(iter(self._seen.items()))
            if seen_at >= threshold:
                break
            del self._seen[oldest_hash]

        if self.max_entries is not None:
            while len(self._seen) > self.max_entries:
                evicted, _ = self._seen.popitem(last=False)
                logger.debug(f"Dedup cap reached, evicting {evicted}")

    def forget(self, tx_hash: str) -> None:
        """Release a hash so the next copy of it is processed again."""
        self._seen.pop(tx_hash.lower(), None)

    def clear(self) -> None:
        self._seen.clear()

    def __contains__(self, tx_hash: str) -> bool:
        return tx_hash.lower() in self._seen

    def __len__(self) -> int:
        return len(self._seen)
