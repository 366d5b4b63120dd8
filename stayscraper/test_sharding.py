#!/usr/bin/env python3
"""
Tests for price shard generation, bisection and the two-tier price filter.
"""
import pytest

from stayscraper.models import ShardTask
from stayscraper.sharding import (
    MAX_SPLIT_DEPTH,
    PriceVerdict,
    bisect_shard,
    classify_price,
    generate_price_shards,
)


def test_generate_price_shards():
    assert generate_price_shards(0, 23, 5) == [(0, 4), (5, 9), (10, 14), (15, 19), (20, 23)]
    assert generate_price_shards(100, 100, 50) == [(100, 100)]
    assert generate_price_shards(10, 5, 5) == []


def test_generated_shards_are_contiguous():
    shards = generate_price_shards(7, 1000, 33)
    assert shards[0][0] == 7
    assert shards[-1][1] == 1000
    for (_, high), (low, _) in zip(shards, shards[1:]):
        assert low == high + 1


@pytest.mark.parametrize("step", [0, -5])
def test_generate_price_shards_rejects_bad_step(step):
    with pytest.raises(ValueError):
        generate_price_shards(0, 100, step)


def test_bisect_truncated_shard():
    left, right = bisect_shard(ShardTask(min_price=0, max_price=999, cursor="abc"), 1200)
    assert (left.min_price, left.max_price, left.split_depth) == (0, 499, 1)
    assert (right.min_price, right.max_price, right.split_depth) == (500, 999, 1)
    assert left.cursor is None and right.cursor is None


def test_no_bisect_when_not_needed():
    assert bisect_shard(ShardTask(min_price=0, max_price=999), 999) is None
    # Width 10 is already as narrow as it gets.
    assert bisect_shard(ShardTask(min_price=100, max_price=110), 5000) is None
    assert bisect_shard(ShardTask(min_price=0, max_price=999, split_depth=MAX_SPLIT_DEPTH), 5000) is None


def test_bisect_unbounded_shard():
    left, right = bisect_shard(ShardTask(), 1000)
    assert (left.min_price, left.max_price) == (0, 500000)
    assert (right.min_price, right.max_price) == (500001, 1000000)


def test_repeated_bisection_stops():
    shard = ShardTask(min_price=0, max_price=1000)
    depth = 0
    while True:
        children = bisect_shard(shard, 5000)
        if children is None:
            break
        shard = children[0]
        depth += 1
    assert depth <= MAX_SPLIT_DEPTH
    assert shard.width <= 10


def test_classify_price():
    shard = ShardTask(min_price=0, max_price=100)
    assert classify_price(10, shard, 50, 300) is PriceVerdict.IN_SHARD
    assert classify_price(250, shard, 50, 300) is PriceVerdict.CROSS_SHARD
    assert classify_price(400, shard, 50, 300) is PriceVerdict.OUT_OF_RANGE
    assert classify_price(None, shard, 50, 300) is PriceVerdict.UNPRICED
    assert classify_price(400, shard, None, None) is PriceVerdict.UNPRICED


def test_verdict_kept():
    assert PriceVerdict.IN_SHARD.kept
    assert PriceVerdict.CROSS_SHARD.kept
    assert PriceVerdict.UNPRICED.kept
    assert not PriceVerdict.OUT_OF_RANGE.kept


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
