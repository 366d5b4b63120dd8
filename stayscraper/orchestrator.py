"""
SEARCH and DETAIL task handlers.

A SEARCH task reads one results page of one price shard: it bisects the
shard when the site truncates the result set, claims new listings against
the global target and schedules the next page. A DETAIL task turns one
claimed listing into an output record. All crawl-wide state lives in the
injected CrawlState; billing goes through the injected Meter.
"""
import logging
from typing import Any, Dict, Optional

from .config import CrawlOptions
from .detail import extract_listing_details
from .locator import make_soup
from .metering import EVENT_LISTING, Meter, NoopMeter, charge_or_abort
from .models import (
    LABEL_SEARCH,
    LABEL_DETAIL,
    PRIORITY_DETAIL,
    PRIORITY_SEARCH,
    CrawlTask,
    ListingDetail,
    ListingSummary,
    ShardTask,
)
from .parsers import find_block_marker
from .errors import BlockedError
from .scraper import (
    click_next,
    find_next_page,
    prepare_detail_page,
    prepare_pagination,
    save_debug_snapshot,
    wait_for_listings,
)
from .search import extract_search_page
from .sharding import bisect_shard, classify_price
from .state import Claim, CrawlState
from .urls import (
    apply_shard,
    clean_listing_url,
    force_nightly_pricing,
    next_cursor_url,
    numeric_listing_id,
    search_query_from_url,
    set_query_params,
)
from .utils import now_iso, run_in_thread

logger = logging.getLogger(__name__)

# Routing keys that must never leak into an output record.
INTERNAL_FIELDS = frozenset([
    "max_listings", "simple_mode", "add_on_images", "add_on_reviews",
    "add_on_details", "add_on_host_details", "label", "scraped_ids",
    "check_in", "check_out", "checkin", "checkout",
    "min_price", "max_price", "global_min_price", "global_max_price",
    "adults", "children", "infants", "pets",
    "price_sharding_step", "enable_horizontal_scaling",
    "is_sharded_request", "shard_range", "split_depth",
    "shard", "summary", "amenities", "images", "name", "title", "description",
])


def shard_key(shard: ShardTask) -> str:
    return f"shard_{shard.min_price}_{shard.max_price}_d{shard.split_depth}"


def listing_key(summary: ListingSummary) -> str:
    """Identity used for cross-page de-duplication."""
    return numeric_listing_id(summary.url) or summary.id or summary.url or ""


def _price_dict(listing: ListingSummary):
    return listing.price.to_dict() if listing.price is not None else None


def _base_record(listing: ListingSummary, listing_id: str, url: str) -> Dict[str, Any]:
    return {
        "listing_id": listing.id or listing_id,
        "url": url,
        "listing_title": listing.title,
        "thumbnail": listing.thumbnail,
        "rating": listing.rating,
        "reviews_count": listing.reviews_count,
        "price": _price_dict(listing),
        "room_type": listing.room_type,
        "beds": listing.beds,
        "bedrooms": listing.bedrooms,
        "bathrooms": listing.bathrooms,
        "person_capacity": listing.person_capacity,
        "location": listing.location,
        "scraped_at": now_iso(),
    }


def build_simple_record(summary: ListingSummary, listing_id: str) -> Dict[str, Any]:
    """Output record for fast mode, built from the search card alone."""
    record = _base_record(summary, listing_id, summary.url or "")
    record["amenities_csv"] = ""
    record["images_csv"] = summary.thumbnail or ""
    record["mode"] = "simple"
    return record


def build_detail_record(detail: ListingDetail, options: CrawlOptions) -> Dict[str, Any]:
    """
    Output record for deep mode.

    Add-on fields appear only when their flag is set; amenities are limited
    to the available ones.
    """
    url = clean_listing_url(detail.url or "")
    record = _base_record(detail, detail.id or "", url)
    record["currency"] = detail.currency or options.currency or "USD"
    record["mode"] = "deep"
    record["coordinates"] = (
        {"latitude": detail.coordinates.latitude, "longitude": detail.coordinates.longitude}
        if detail.coordinates is not None else None
    )
    record["locale"] = detail.locale

    if options.add_on_details:
        record["listing_description"] = detail.description
        record["sub_description"] = detail.sub_description
        record["house_rules"] = detail.house_rules
        record["amenities_csv"] = ", ".join(a.title for a in detail.amenities if a.available)
    if options.add_on_host_details:
        record["host"] = detail.host.to_dict() if detail.host is not None else None
    if options.add_on_images:
        record["images_csv"] = ", ".join(detail.images)
    if options.add_on_reviews:
        record["reviews"] = list(detail.reviews)
    return record


def strip_internal_fields(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if k not in INTERNAL_FIELDS}


class CrawlOrchestrator:
    """
    Handlers for SEARCH and DETAIL tasks.

    ``enqueue`` is an async callable with the signature
    ``enqueue(url, label, payload, priority, unique_key)``. ``sink`` needs a
    ``push(record)`` method and ``artifacts`` a ``save(key, data,
    content_type)`` method.
    """

    def __init__(
        self,
        options: CrawlOptions,
        state: CrawlState,
        enqueue,
        sink,
        meter: Optional[Meter] = None,
        artifacts=None,
    ):
        self.options = options
        self.state = state
        self.enqueue = enqueue
        self.sink = sink
        self.meter = meter or NoopMeter()
        self.artifacts = artifacts

    @property
    def limit(self) -> Optional[int]:
        return self.options.max_listings

    def _progress(self) -> str:
        return f"{self.state.scraped_count}/{self.limit if self.limit is not None else '∞'}"

    def default_shard(self) -> ShardTask:
        return ShardTask(min_price=self.options.min_price, max_price=self.options.max_price)

    def _emit(self, record: Dict[str, Any]) -> bool:
        try:
            self.sink.push(record)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to push listing %s: %s", record.get("url"), e)
            return False
        self.state.record_push()
        return True

    async def handle(self, page, task: CrawlTask, session=None) -> None:
        if task.label == LABEL_DETAIL:
            await self.handle_detail(page, task, session)
        else:
            await self.handle_search(page, task, session)

    # SEARCH

    async def handle_search(self, page, task: CrawlTask, session=None) -> None:
        if self.state.target_reached(self.limit):
            return

        shard = task.payload.get("shard") or self.default_shard()
        logger.info("[SEARCH] Searching %r | Progress: %s", search_query_from_url(task.url), self._progress())

        if not await wait_for_listings(page):
            marker = find_block_marker(await page.content())
            if marker:
                logger.warning("[SEARCH] Access blocked, rotating session.")
                if session is not None:
                    session.retire()
                raise BlockedError(task.url, marker)

        # The page is read and parsed once, off the event loop; pagination reuses the soup.
        await prepare_pagination(page)
        soup = await run_in_thread(make_soup, await page.content())
        result = await run_in_thread(extract_search_page, soup, self.options.currency)
        logger.info(
            "[SEARCH] Found %d listings on page (Duplicates dropped: %d)",
            len(result.listings), result.duplicate_count,
        )
        await charge_or_abort(self.meter, EVENT_LISTING, result.duplicate_count)

        children = bisect_shard(shard, result.total_count)
        if children is not None:
            for child in children:
                await self.enqueue(
                    apply_shard(task.url, child, self.options.currency),
                    label=LABEL_SEARCH,
                    payload={"shard": child},
                    priority=PRIORITY_SEARCH,
                    unique_key=shard_key(child),
                )
            logger.info(
                "[SEARCH] %d results reported, split %s-%s at depth %d",
                result.total_count, children[0].min_price, children[1].max_price, children[0].split_depth,
            )
            return

        if not result.listings:
            logger.warning("[SEARCH] No listings on %s", task.url)
            await save_debug_snapshot(page, self.artifacts, "error_snapshot_empty")
            return

        remaining = self.state.remaining(self.limit)
        if remaining == 0:
            return
        candidates = result.listings if remaining is None else result.listings[:remaining]

        skipped = await self._take_listings(candidates, shard)
        await charge_or_abort(self.meter, EVENT_LISTING, skipped)

        if not self.state.target_reached(self.limit):
            await self.paginate(page, task, len(result.listings), soup)

    async def _take_listings(self, candidates, shard: ShardTask) -> int:
        """Claim and route each candidate; returns how many were skipped."""
        skipped = 0
        for summary in candidates:
            if self.state.target_reached(self.limit):
                break
            key = listing_key(summary)
            if not key or self.state.is_seen(key):
                skipped += 1
                continue

            amount = summary.price.as_float() if summary.price is not None else None
            verdict = classify_price(amount, shard, self.options.global_min_price, self.options.global_max_price)
            if not verdict.kept:
                logger.debug("[SEARCH] %s priced %s is outside the requested range", key, amount)
                skipped += 1
                continue

            claim = self.state.claim(key, self.limit)
            if claim is Claim.DUPLICATE:
                skipped += 1
                continue
            if claim is Claim.CAP_REACHED:
                break

            if self.options.needs_deep_scrape:
                await self.enqueue(
                    summary.url,
                    label=LABEL_DETAIL,
                    payload={"summary": summary},
                    priority=PRIORITY_DETAIL,
                    unique_key=None,
                )
            elif self._emit(build_simple_record(summary, key)):
                await charge_or_abort(self.meter, EVENT_LISTING)

            count = self.state.scraped_count
            if count == 1 or count % 10 == 0:
                logger.info("[PROGRESS] Scraped %s listings", self._progress())
        return skipped

    async def paginate(self, page, task: CrawlTask, page_item_count: int, soup=None) -> None:
        """
        Schedule the next results page.

        Tries the Next link, then a script-driven Next button, then falls back
        to advancing the opaque cursor. A disabled Next marks the last page.
        ``soup`` is the parsed page when the caller already has it.
        """
        currency = self.options.currency
        if soup is None:
            await prepare_pagination(page)
            soup = await run_in_thread(make_soup, await page.content())
        nxt = find_next_page(soup)

        if nxt.found and nxt.href and not nxt.disabled:
            next_url = force_nightly_pricing(nxt.href, currency)
        elif nxt.found and nxt.needs_click and not nxt.disabled:
            next_url = await click_next(page)
            if next_url is None:
                return
            if currency:
                next_url = set_query_params(next_url, {"currency": currency})
        elif nxt.disabled:
            logger.info("[SEARCH] Last page reached for %s", search_query_from_url(task.url))
            return
        else:
            logger.debug("[SEARCH] %s; advancing cursor", nxt.reason)
            try:
                next_url = next_cursor_url(task.url, page_item_count, currency)
            except (TypeError, ValueError) as e:
                logger.warning("[SEARCH] Could not build next page URL: %s", e)
                await save_debug_snapshot(page, self.artifacts, "debug_pagination", full_page=True)
                return

        await self.enqueue(
            next_url,
            label=LABEL_SEARCH,
            payload=dict(task.payload),
            priority=PRIORITY_SEARCH,
            unique_key=None,
        )
        logger.info("[SEARCH] → Next page")

    # DETAIL

    async def handle_detail(self, page, task: CrawlTask, session=None) -> None:
        summary: Optional[ListingSummary] = task.payload.get("summary")
        logger.info("[DETAIL] Processing listing %s", clean_listing_url(task.url))

        await prepare_detail_page(page)
        detail = await run_in_thread(
            extract_listing_details,
            await page.content(),
            task.url,
            cached_price=summary.price if summary is not None else None,
            host_details=self.options.add_on_host_details,
        )
        if not detail.id:
            logger.error("[DETAIL] Failed to extract listing %s", task.url)
            return

        detail.merged_over(summary)
        record = strip_internal_fields(build_detail_record(detail, self.options))
        if not self._emit(record):
            return
        logger.info("[DETAIL] Pushed listing %s | Total: %d", detail.id, self.state.pushed_count)

        await charge_or_abort(self.meter, EVENT_LISTING)
        for event in self.options.addon_events():
            await charge_or_abort(self.meter, event)
