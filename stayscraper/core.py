"""
Crawl orchestration: start tasks, the task queue, browser sessions and the
worker pool.
"""
import asyncio
import itertools
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout, async_playwright

from .config import CrawlOptions
from .errors import BlockedError, MeteringError
from .export import DatasetSink
from .metering import Meter, NoopMeter
from .models import LABEL_DETAIL, LABEL_SEARCH, PRIORITY_SEARCH, CrawlTask, ShardTask
from .orchestrator import CrawlOrchestrator
from .sharding import generate_price_shards
from .state import CrawlState
from .urls import BASE_URL, build_search_url, get_query_param, is_detail_url, set_query_params

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 100
NAVIGATION_TIMEOUT_S = 30
HANDLER_TIMEOUT_S = 60
MAX_BLOCK_RETRIES = 3

FALLBACK_SEARCH_URL = f"{BASE_URL}/s/Paris/homes"

LAUNCH_ARGS = ["--disable-blink-features=AutomationControlled"]
HEADLESS_EXTRA_ARGS = ["--disable-dev-shm-usage", "--no-sandbox", "--disable-gpu"]
CONTEXT_KWARGS = dict(
    viewport={"width": 1280, "height": 900},
    user_agent=(
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    locale="en-US",
)


def build_start_tasks(options: CrawlOptions) -> List[CrawlTask]:
    """
    Initial tasks of a run.

    Explicit start URLs come first (``/rooms/<id>`` opens a DETAIL task,
    anything else a SEARCH task), then one search per location query, fanned
    out per price shard when sharding applies. With nothing requested a
    single Paris search is used.
    """
    tasks: List[CrawlTask] = []
    whole_range = ShardTask(min_price=options.min_price, max_price=options.max_price)

    for url in options.start_urls:
        if options.currency and get_query_param(url, "currency") is None:
            url = set_query_params(url, {"currency": options.currency})
        label = LABEL_DETAIL if is_detail_url(url) else LABEL_SEARCH
        payload = {"shard": whole_range} if label == LABEL_SEARCH else {}
        tasks.append(CrawlTask(url=url, label=label, payload=payload, unique_key=url))

    for query in options.location_queries:
        if options.should_shard:
            for low, high in generate_price_shards(options.min_price, options.max_price, options.price_sharding_step):
                shard = ShardTask(min_price=low, max_price=high)
                url = build_search_url(query, options, options.check_in, options.check_out, shard=shard)
                tasks.append(CrawlTask(url=url, payload={"shard": shard}, unique_key=f"{query}_shard_{low}_{high}"))
        else:
            url = build_search_url(query, options, options.check_in, options.check_out)
            tasks.append(CrawlTask(url=url, payload={"shard": whole_range}, unique_key=url))

    if not tasks:
        tasks.append(CrawlTask(url=FALLBACK_SEARCH_URL, payload={"shard": whole_range}, unique_key="FALLBACK_PARIS"))
    return tasks


def request_budget(options: CrawlOptions, start_count: int) -> Optional[int]:
    """Cap on tasks accepted by the queue; None for unlimited runs."""
    cap = options.max_listings
    if cap is None:
        return None
    return max(start_count + cap * 2, cap * 5)


class TaskQueue:
    """
    Priority queue of crawl tasks.

    Lower priorities run first and equal priorities run in insertion order.
    A unique key (the URL when none is given) is accepted only once per run,
    and at most ``max_requests`` tasks are ever accepted.
    """

    def __init__(self, max_requests: Optional[int] = None):
        self.max_requests = max_requests
        self._queue: asyncio.PriorityQueue = asyncio.PriorityQueue()
        self._keys = set()
        self._seq = itertools.count()

    @property
    def accepted(self) -> int:
        return len(self._keys)

    def qsize(self) -> int:
        return self._queue.qsize()

    async def enqueue(
        self,
        url: str,
        label: str = LABEL_SEARCH,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = PRIORITY_SEARCH,
        unique_key: Optional[str] = None,
    ) -> bool:
        task = CrawlTask(url=url, label=label, payload=payload or {}, priority=priority, unique_key=unique_key)
        return await self.add(task)

    async def add(self, task: CrawlTask) -> bool:
        if task.key in self._keys:
            logger.debug("Already queued: %s", task.key)
            return False
        if self.max_requests is not None and len(self._keys) >= self.max_requests:
            logger.debug("Request budget of %d reached, dropping %s", self.max_requests, task.url)
            return False
        self._keys.add(task.key)
        await self._queue.put((task.priority, next(self._seq), task))
        return True

    async def requeue(self, task: CrawlTask) -> None:
        """Put a task back for another attempt, bypassing de-duplication."""
        await self._queue.put((task.priority, next(self._seq), task))

    async def get(self) -> CrawlTask:
        _, _, task = await self._queue.get()
        return task

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()


class BrowserSession:
    """One browser context with its page. Retired sessions are replaced."""

    def __init__(self, browser, currency: Optional[str] = None, navigation_timeout_s: float = NAVIGATION_TIMEOUT_S):
        self.browser = browser
        self.currency = currency
        self.navigation_timeout_s = navigation_timeout_s
        self.context = None
        self.page = None
        self.retired = False

    async def open(self) -> "BrowserSession":
        self.context = await self.browser.new_context(**CONTEXT_KWARGS)
        if self.currency:
            await self.context.add_cookies([{
                "name": "currency",
                "value": self.currency,
                "domain": ".airbnb.com",
                "path": "/",
            }])
        self.context.set_default_navigation_timeout(self.navigation_timeout_s * 1000)
        self.page = await self.context.new_page()
        return self

    def retire(self) -> None:
        self.retired = True

    async def close(self) -> None:
        if self.context is not None:
            try:
                await self.context.close()
            except PlaywrightError:
                logger.debug("Context already closed")
            self.context = None
            self.page = None


SessionFactory = Callable[[], Awaitable[Any]]


async def run_task(
    orchestrator: CrawlOrchestrator,
    task: CrawlTask,
    session,
    navigation_timeout_s: float = NAVIGATION_TIMEOUT_S,
    handler_timeout_s: float = HANDLER_TIMEOUT_S,
) -> None:
    """Navigate to the task URL and run its handler."""
    if task.label == LABEL_SEARCH and orchestrator.state.target_reached(orchestrator.limit):
        return
    page = session.page
    try:
        await page.goto(task.url, timeout=navigation_timeout_s * 1000, wait_until="domcontentloaded")
    except PlaywrightTimeout:
        if task.label != LABEL_SEARCH:
            raise
        logger.warning("[SEARCH] Navigation timed out, reading the page anyway: %s", task.url)
    await asyncio.wait_for(orchestrator.handle(page, task, session), timeout=handler_timeout_s)


async def process_queue(
    queue: TaskQueue,
    orchestrator: CrawlOrchestrator,
    session_factory: SessionFactory,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    navigation_timeout_s: float = NAVIGATION_TIMEOUT_S,
    handler_timeout_s: float = HANDLER_TIMEOUT_S,
) -> None:
    """
    Run tasks with a pool of workers until the queue drains.

    Each worker owns one session and replaces it once retired. Task failures
    are logged and end only that task; a blocked task is retried on a fresh
    session. MeteringError stops every worker and is re-raised.
    """

    async def worker(n: int) -> None:
        session = None
        try:
            while True:
                task = await queue.get()
                try:
                    if session is None or session.retired:
                        if session is not None:
                            await session.close()
                        session = await session_factory()
                    await run_task(orchestrator, task, session, navigation_timeout_s, handler_timeout_s)
                except MeteringError:
                    raise
                except BlockedError as e:
                    if task.retries < MAX_BLOCK_RETRIES:
                        task.retries += 1
                        logger.warning("%s; retry %d/%d", e, task.retries, MAX_BLOCK_RETRIES)
                        await queue.requeue(task)
                    else:
                        logger.error("[%s] Giving up on %s after %d retries", task.label, task.url, task.retries)
                except (PlaywrightError, asyncio.TimeoutError) as e:
                    logger.error("[%s] Task failed for %s: %s", task.label, task.url, e)
                except Exception:
                    logger.exception("[%s] Unexpected error for %s", task.label, task.url)
                finally:
                    queue.task_done()
        finally:
            if session is not None:
                await session.close()

    workers = [asyncio.create_task(worker(n)) for n in range(max(1, max_concurrency))]
    drained = asyncio.create_task(queue.join())
    try:
        done, _ = await asyncio.wait([drained, *workers], return_when=asyncio.FIRST_COMPLETED)
    finally:
        for w in workers:
            w.cancel()
        drained.cancel()
        await asyncio.gather(*workers, drained, return_exceptions=True)

    for finished in done:
        if finished is not drained and not finished.cancelled() and finished.exception() is not None:
            raise finished.exception()


async def run_crawl(
    options: CrawlOptions,
    meter: Optional[Meter] = None,
    sink: Optional[DatasetSink] = None,
    artifacts=None,
    headless: bool = True,
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
    navigation_timeout_s: float = NAVIGATION_TIMEOUT_S,
    handler_timeout_s: float = HANDLER_TIMEOUT_S,
    state: Optional[CrawlState] = None,
) -> DatasetSink:
    """
    Main crawl function.

    Plans the start tasks, launches Chromium and runs the worker pool until
    the queue drains. Returns the sink holding every emitted record.
    MeteringError propagates to the caller.
    """
    sink = sink if sink is not None else DatasetSink()
    state = state if state is not None else CrawlState()
    meter = meter or NoopMeter()

    start_tasks = build_start_tasks(options)
    queue = TaskQueue(max_requests=request_budget(options, len(start_tasks)))
    for task in start_tasks:
        await queue.add(task)

    orchestrator = CrawlOrchestrator(options, state, queue.enqueue, sink, meter=meter, artifacts=artifacts)
    logger.info(">>> Starting | %s | URLs: %d", options.describe(), len(start_tasks))

    is_headless = bool(headless) or os.getenv("HEADLESS", "").strip().lower() in ("1", "true")
    launch_args = list(LAUNCH_ARGS)
    if is_headless:
        launch_args += HEADLESS_EXTRA_ARGS

    async with async_playwright() as p:
        if is_headless:
            browser = await p.chromium.launch(headless=True, args=launch_args)
        else:
            browser = await p.chromium.launch(headless=False, args=launch_args, slow_mo=150)
        logger.info(">>> Headless mode: %s", is_headless)

        async def open_session() -> BrowserSession:
            return await BrowserSession(browser, options.currency, navigation_timeout_s).open()

        try:
            await process_queue(
                queue,
                orchestrator,
                open_session,
                max_concurrency=max_concurrency,
                navigation_timeout_s=navigation_timeout_s,
                handler_timeout_s=handler_timeout_s,
            )
        finally:
            await browser.close()

    logger.info(
        ">>> Finished | Scraped %d | Pushed %d",
        state.scraped_count, state.pushed_count,
    )
    return sink
