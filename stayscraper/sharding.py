"""
Price range sharding.

The site truncates any filtered search at a fixed number of results, so a
price range is split into shards up front and a shard that still reports a
truncated result count is bisected when it is visited.
"""
from enum import Enum
from typing import List, Optional, Tuple

from .models import ShardTask

TRUNCATION_THRESHOLD = 1000
MIN_SHARD_WIDTH = 10
MAX_SPLIT_DEPTH = 10

# Bounds used for an unbounded search when it needs bisecting.
DEFAULT_SHARD_FLOOR = 0
DEFAULT_SHARD_CEILING = 1_000_000


def generate_price_shards(min_price: int, max_price: int, step: int) -> List[Tuple[int, int]]:
    """
    Split ``[min_price, max_price]`` into contiguous intervals of ``step``.

    >>> generate_price_shards(0, 23, 5)
    [(0, 4), (5, 9), (10, 14), (15, 19), (20, 23)]
    """
    if step <= 0:
        raise ValueError(f"step must be positive, got {step}")
    shards = []
    price = min_price
    while price <= max_price:
        shards.append((price, min(price + step - 1, max_price)))
        price += step
    return shards


def should_bisect(shard: ShardTask, total_count: int) -> bool:
    low = shard.min_price if shard.min_price is not None else DEFAULT_SHARD_FLOOR
    high = shard.max_price if shard.max_price is not None else DEFAULT_SHARD_CEILING
    return (
        total_count >= TRUNCATION_THRESHOLD
        and shard.split_depth < MAX_SPLIT_DEPTH
        and high - low > MIN_SHARD_WIDTH
    )


def bisect_shard(shard: ShardTask, total_count: int) -> Optional[Tuple[ShardTask, ShardTask]]:
    """
    Split a truncated shard at its integer midpoint.

    Returns the two children (one level deeper, cursors cleared), or None
    when the page is not truncated, the shard is already narrow, or the
    depth cap is reached.
    """
    if not should_bisect(shard, total_count):
        return None
    low = shard.min_price if shard.min_price is not None else DEFAULT_SHARD_FLOOR
    high = shard.max_price if shard.max_price is not None else DEFAULT_SHARD_CEILING
    mid = (low + high) // 2
    depth = shard.split_depth + 1
    return (
        ShardTask(min_price=low, max_price=mid, split_depth=depth),
        ShardTask(min_price=mid + 1, max_price=high, split_depth=depth),
    )


class PriceVerdict(Enum):
    IN_SHARD = "in_shard"
    CROSS_SHARD = "cross_shard"
    OUT_OF_RANGE = "out_of_range"
    UNPRICED = "unpriced"

    @property
    def kept(self) -> bool:
        return self is not PriceVerdict.OUT_OF_RANGE


def _inside(amount: float, low: Optional[float], high: Optional[float]) -> bool:
    return (low is None or amount >= low) and (high is None or amount <= high)


def classify_price(
    amount: Optional[float],
    shard: ShardTask,
    global_min: Optional[float],
    global_max: Optional[float],
) -> PriceVerdict:
    """
    Two-tier price filter.

    Inside the shard's own window: kept. Outside it but inside the overall
    requested window: kept as well, since it would only be re-found later.
    Outside both: skipped. Listings without a price, or runs without a global
    window, are not filtered.
    """
    if amount is None or (global_min is None and global_max is None):
        return PriceVerdict.UNPRICED
    if _inside(amount, shard.min_price, shard.max_price):
        return PriceVerdict.IN_SHARD
    if _inside(amount, global_min, global_max):
        return PriceVerdict.CROSS_SHARD
    return PriceVerdict.OUT_OF_RANGE
