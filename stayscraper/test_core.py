#!/usr/bin/env python3
"""
Tests for start task planning, the task queue and the worker pool.
"""
import asyncio
from urllib.parse import parse_qs, urlsplit

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from stayscraper.config import CrawlInput, resolve_options
from stayscraper.core import (
    FALLBACK_SEARCH_URL,
    MAX_BLOCK_RETRIES,
    TaskQueue,
    build_start_tasks,
    process_queue,
    request_budget,
    run_task,
)
from stayscraper.errors import BlockedError, MeteringError
from stayscraper.models import LABEL_DETAIL, LABEL_SEARCH, PRIORITY_DETAIL, CrawlTask, ShardTask
from stayscraper.state import CrawlState


class FakePage:
    def __init__(self, goto_error=None):
        self.visited = []
        self.goto_error = goto_error

    async def goto(self, url, timeout=None, wait_until=None):
        self.visited.append(url)
        if self.goto_error is not None:
            raise self.goto_error


class FakeSession:
    def __init__(self, page=None):
        self.page = page or FakePage()
        self.retired = False
        self.closed = False

    def retire(self):
        self.retired = True

    async def close(self):
        self.closed = True


class FakeOrchestrator:
    """Runs a scripted outcome per URL instead of real handlers."""

    def __init__(self, outcomes=None, limit=None, queue=None):
        self.state = CrawlState()
        self.limit = limit
        self.outcomes = outcomes or {}
        self.queue = queue
        self.handled = []

    async def handle(self, page, task, session=None):
        self.handled.append(task.url)
        outcome = self.outcomes.get(task.url)
        if outcome == "block":
            session.retire()
            raise BlockedError(task.url, "Access Denied")
        if outcome == "spawn":
            await self.queue.enqueue(task.url + "/child", label=LABEL_DETAIL, priority=PRIORITY_DETAIL)
        elif isinstance(outcome, BaseException):
            raise outcome


def _options(**inputs):
    return resolve_options(CrawlInput(**inputs))


def test_start_tasks_are_sharded_per_query():
    options = _options(location_queries=["London"], max_listings=10, min_price=0, max_price=9, price_sharding_step=5)
    tasks = build_start_tasks(options)

    assert [t.unique_key for t in tasks] == ["London_shard_0_4", "London_shard_5_9"]
    assert tasks[1].payload["shard"] == ShardTask(min_price=5, max_price=9)
    params = parse_qs(urlsplit(tasks[1].url).query)
    assert params["price_min"] == ["5"]
    assert params["price_max"] == ["9"]


def test_start_tasks_without_sharding():
    options = _options(location_queries=["Rome"], max_listings=10)
    tasks = build_start_tasks(options)
    assert len(tasks) == 1
    assert tasks[0].unique_key == tasks[0].url
    assert tasks[0].payload["shard"] == ShardTask()


def test_start_urls_are_labelled():
    options = _options(
        location_queries=[],
        max_listings=10,
        start_urls=[
            "https://www.airbnb.com/rooms/123",
            "https://www.airbnb.com/s/Paris/homes?currency=EUR",
        ],
    )
    detail, search = build_start_tasks(options)

    assert detail.label == LABEL_DETAIL
    assert detail.url == "https://www.airbnb.com/rooms/123?currency=USD"
    assert detail.payload == {}
    assert search.label == LABEL_SEARCH
    assert search.url.endswith("currency=EUR")
    assert "shard" in search.payload


def test_fallback_search():
    tasks = build_start_tasks(_options(location_queries=[], max_listings=5))
    assert len(tasks) == 1
    assert tasks[0].url == FALLBACK_SEARCH_URL
    assert tasks[0].unique_key == "FALLBACK_PARIS"


def test_request_budget():
    assert request_budget(_options(), 3) is None
    assert request_budget(_options(max_listings=10), 3) == 50
    assert request_budget(_options(max_listings=10), 40) == 60


def test_task_queue_dedupe_budget_and_priority():
    async def run():
        queue = TaskQueue(max_requests=3)
        assert await queue.enqueue("https://a/search")
        assert not await queue.enqueue("https://a/search")
        assert await queue.enqueue("https://a/rooms/1", label=LABEL_DETAIL, priority=PRIORITY_DETAIL)
        assert await queue.enqueue("https://a/search", unique_key="other")
        assert not await queue.enqueue("https://a/over-budget")
        assert queue.accepted == 3

        order = []
        while queue.qsize():
            order.append((await queue.get()).url)
            queue.task_done()
        return order

    assert asyncio.run(run()) == ["https://a/rooms/1", "https://a/search", "https://a/search"]


def test_run_task_skips_search_once_target_reached():
    orch = FakeOrchestrator(limit=1)
    orch.state.claim("x", limit=1)
    session = FakeSession()

    asyncio.run(run_task(orch, CrawlTask(url="https://a/s"), session))
    assert session.page.visited == []
    assert orch.handled == []


def test_run_task_tolerates_search_navigation_timeout():
    orch = FakeOrchestrator()
    session = FakeSession(FakePage(goto_error=PlaywrightTimeout("slow")))

    asyncio.run(run_task(orch, CrawlTask(url="https://a/s"), session))
    assert orch.handled == ["https://a/s"]

    with pytest.raises(PlaywrightTimeout):
        asyncio.run(run_task(orch, CrawlTask(url="https://a/rooms/1", label=LABEL_DETAIL), session))


def test_run_task_handler_timeout():
    class SlowOrchestrator(FakeOrchestrator):
        async def handle(self, page, task, session=None):
            await asyncio.sleep(5)

    with pytest.raises(asyncio.TimeoutError):
        asyncio.run(run_task(SlowOrchestrator(), CrawlTask(url="https://a/s"), FakeSession(), handler_timeout_s=0.01))


def _run_pool(urls, outcomes, max_concurrency=2):
    sessions = []

    async def run():
        queue = TaskQueue()
        orch = FakeOrchestrator(outcomes, queue=queue)
        for url in urls:
            await queue.enqueue(url)

        async def factory():
            session = FakeSession()
            sessions.append(session)
            return session

        await process_queue(queue, orch, factory, max_concurrency=max_concurrency)
        return orch

    return asyncio.run(run()), sessions


def test_pool_drains_queue_despite_failures():
    orch, sessions = _run_pool(
        ["https://a/1", "https://a/2", "https://a/3", "https://a/4"],
        {
            "https://a/1": RuntimeError("boom"),
            "https://a/2": PlaywrightError("target closed"),
            "https://a/3": "spawn",
        },
    )
    assert sorted(orch.handled) == ["https://a/1", "https://a/2", "https://a/3", "https://a/3/child", "https://a/4"]
    assert all(s.closed for s in sessions)


def test_blocked_task_is_retried_on_fresh_sessions():
    orch, sessions = _run_pool(["https://a/blocked"], {"https://a/blocked": "block"}, max_concurrency=1)
    assert orch.handled == ["https://a/blocked"] * (MAX_BLOCK_RETRIES + 1)
    assert len(sessions) == MAX_BLOCK_RETRIES + 1


def test_metering_error_stops_the_pool():
    with pytest.raises(MeteringError):
        _run_pool(
            ["https://a/1", "https://a/2", "https://a/3"],
            {"https://a/2": MeteringError("listing-scraped", "Credit charge failed")},
            max_concurrency=1,
        )


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
