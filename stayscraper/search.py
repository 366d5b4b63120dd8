"""
Search results page extraction.
"""
import logging
from typing import Any, Dict, Optional, Set, Union

from bs4 import BeautifulSoup, Tag

from .locator import (
    DEFAULT_MAX_DEPTH,
    SEARCH_SENTINELS,
    find_first,
    is_listing_node,
    iter_json_payloads,
    make_soup,
    walk,
)
from .models import ListingSummary, SearchPageResult
from .normalizer import summary_from_node
from .urls import listing_url, numeric_listing_id
from .utils import clean_text

logger = logging.getLogger(__name__)

TOTAL_COUNT_KEYS = ("listingsCount", "listingCount", "totalListingCount")
CARD_TITLE_SELECTORS = ('[data-testid="listing-card-subtitle"]', '[data-testid="listing-card-title"]')


def _count_from_node(node: Dict[str, Any]) -> Optional[int]:
    for key in TOTAL_COUNT_KEYS:
        value = node.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return value
    if node.get("on_the_map_search_stay_type"):
        meta = node.get("presentation_metadata")
        if isinstance(meta, dict):
            value = meta.get("listings_count")
            if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                return value
    return None


def find_total_count(tree: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> int:
    """First plausible result-count field in the tree, 0 when there is none."""
    return find_first(tree, _count_from_node, max_depth=max_depth) or 0


def _currency_from_node(node: Dict[str, Any]) -> Optional[str]:
    value = node.get("currency")
    if isinstance(value, str) and len(value) == 3 and value.isalpha():
        return value.upper()
    if node.get("filterName") == "currency":
        values = node.get("filterValues")
        if isinstance(values, list) and values and isinstance(values[0], str):
            return values[0]
    return None


def find_page_currency(tree: Any) -> Optional[str]:
    return find_first(tree, _currency_from_node)


def _card_title(anchor: Tag) -> Optional[str]:
    for scope in (anchor, anchor.find_parent(attrs={"data-testid": "card-container"})):
        if scope is None:
            continue
        for selector in CARD_TITLE_SELECTORS:
            el = scope.select_one(selector)
            text = clean_text(el.get_text(" ")) if el is not None else ""
            if text:
                return text
    return None


def _collect_dom_listings(soup: BeautifulSoup, result: SearchPageResult, seen: Set[str]) -> int:
    """Pick up listing links the structured pass missed. Returns how many."""
    added = 0
    for anchor in soup.select('a[href*="/rooms/"]'):
        listing_id = numeric_listing_id(anchor.get("href") or "")
        if not listing_id:
            continue
        if listing_id in seen:
            result.duplicate_count += 1
            continue
        seen.add(listing_id)
        result.listings.append(ListingSummary(
            id=listing_id,
            url=listing_url(listing_id),
            title=_card_title(anchor),
        ))
        added += 1
    return added


def extract_search_page(html: Union[str, BeautifulSoup], currency: Optional[str] = None) -> SearchPageResult:
    """
    Extract the listing batch of one rendered search page.

    Listings come from the embedded niobe payload first, then from listing
    anchors in the DOM. Ids seen twice on the page are dropped and counted in
    ``duplicate_count``. ``total_count`` is the site's reported result count,
    or the batch size when the page does not report one.
    ``html`` may also be an already parsed document.
    """
    soup = make_soup(html)
    result = SearchPageResult()
    seen: Set[str] = set()

    for payload in iter_json_payloads(soup, SEARCH_SENTINELS):
        niobe = payload.get("niobeClientData") if isinstance(payload, dict) else None
        if not niobe:
            continue
        if not result.total_count:
            result.total_count = find_total_count(niobe)
        page_currency = find_page_currency(niobe)

        for node in walk(niobe):
            if not is_listing_node(node):
                continue
            summary = summary_from_node(node, page_currency)
            if summary is None:
                continue
            if summary.id in seen:
                result.duplicate_count += 1
                continue
            seen.add(summary.id)
            if summary.price is not None and not summary.price.currency:
                summary.price.currency = currency
            result.listings.append(summary)

    structured = len(result.listings)
    from_dom = _collect_dom_listings(soup, result, seen)
    logger.debug(
        "Search page: %d structured, %d from DOM, %d duplicates, total=%d",
        structured, from_dom, result.duplicate_count, result.total_count,
    )

    if not result.total_count:
        result.total_count = len(result.listings)
    return result
