#!/usr/bin/env python3
"""
Tests for the crawl-wide seen set and counters.
"""
import threading

import pytest

from stayscraper.state import Claim, CrawlState


def test_claim_duplicate_and_cap():
    state = CrawlState()
    assert state.claim("1", limit=2) is Claim.CLAIMED
    assert state.claim("1", limit=2) is Claim.DUPLICATE
    assert state.claim("2", limit=2) is Claim.CLAIMED
    assert state.claim("3", limit=2) is Claim.CAP_REACHED

    assert state.scraped_count == 2
    assert state.seen_ids == frozenset({"1", "2"})
    assert not state.is_seen("3")


def test_claim_without_limit():
    state = CrawlState()
    for n in range(50):
        assert state.claim(str(n)) is Claim.CLAIMED
    assert state.remaining(None) is None
    assert not state.target_reached(None)


def test_racing_claims_yield_one_winner():
    state = CrawlState()
    results = []
    barrier = threading.Barrier(8)

    def claim():
        barrier.wait()
        results.append(state.claim("42", limit=10))

    threads = [threading.Thread(target=claim) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(Claim.CLAIMED) == 1
    assert results.count(Claim.DUPLICATE) == 7
    assert state.scraped_count == 1


def test_remaining_target_and_reset():
    state = CrawlState()
    state.claim("a", limit=3)
    assert state.remaining(3) == 2
    assert not state.target_reached(3)
    state.claim("b", limit=3)
    state.claim("c", limit=3)
    assert state.remaining(3) == 0
    assert state.target_reached(3)

    assert state.record_push() == 1
    assert state.pushed_count == 1

    state.reset()
    assert state.scraped_count == 0
    assert state.pushed_count == 0
    assert state.seen_ids == frozenset()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
