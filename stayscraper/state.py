"""
Crawl-wide mutable state shared by every task of a run.
"""
import threading
from enum import Enum
from typing import FrozenSet, Optional


class Claim(Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"
    CAP_REACHED = "cap_reached"


class CrawlState:
    """
    Counters and the seen-id set of one run.

    ``scraped_count`` counts listings reserved (queued for detail or emitted),
    ``pushed_count`` counts records actually written. The seen set only
    grows; ``reset`` exists for test isolation.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen = set()
        self.scraped_count = 0
        self.pushed_count = 0

    def claim(self, listing_id: str, limit: Optional[int] = None) -> Claim:
        """
        Atomically reserve ``listing_id`` and one slot of the target cap.

        Two tasks racing for the same id get exactly one CLAIMED.
        """
        with self._lock:
            if listing_id in self._seen:
                return Claim.DUPLICATE
            if limit is not None and self.scraped_count >= limit:
                return Claim.CAP_REACHED
            self._seen.add(listing_id)
            self.scraped_count += 1
            return Claim.CLAIMED

    def is_seen(self, listing_id: str) -> bool:
        with self._lock:
            return listing_id in self._seen

    def target_reached(self, limit: Optional[int]) -> bool:
        return limit is not None and self.scraped_count >= limit

    def remaining(self, limit: Optional[int]) -> Optional[int]:
        if limit is None:
            return None
        return max(limit - self.scraped_count, 0)

    def record_push(self) -> int:
        with self._lock:
            self.pushed_count += 1
            return self.pushed_count

    @property
    def seen_ids(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._seen)

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()
            self.scraped_count = 0
            self.pushed_count = 0
