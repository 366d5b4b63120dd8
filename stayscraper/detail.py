"""
Listing detail page extraction.

Sources are merged first-match-wins in this order: the primary niobe /
pageProps payload, the secondary ``#__NEXT_DATA__`` bootstrap payload, then
the DOM. The page must already be prepared (content rendered, "Show more"
expanded, lazy sections scrolled into view); see
``scraper.prepare_detail_page``.
"""
import logging
from typing import Optional

from bs4 import BeautifulSoup

from .locator import DETAIL_SENTINELS, get_path, iter_json_payloads, load_script_json, make_soup, walk
from .models import Host, ListingDetail, Price, is_empty
from .normalizer import (
    apply_bootstrap_payload,
    apply_detail_node,
    apply_dom_host,
    apply_dom_overview,
    dom_description,
    dom_house_rules,
    dom_sub_description,
    dom_title,
)
from .parsers import decode_opaque_id, is_placeholder_title
from .urls import BASE_URL, clean_listing_url, listing_id_from_url

logger = logging.getLogger(__name__)

DETAIL_MAX_DEPTH = 12


def apply_primary_payloads(soup: BeautifulSoup, record: ListingDetail, host_details: bool = False) -> None:
    for payload in iter_json_payloads(soup, DETAIL_SENTINELS):
        if not isinstance(payload, dict):
            continue
        for root in (payload.get("niobeClientData"), get_path(payload, "props.pageProps")):
            if not root:
                continue
            for node in walk(root, max_depth=DETAIL_MAX_DEPTH):
                apply_detail_node(node, record, host_details)


def apply_dom_fallbacks(soup: BeautifulSoup, record: ListingDetail, host_details: bool = False) -> None:
    if is_empty(record.title):
        record.title = dom_title(soup)
    if is_empty(record.description):
        record.description = dom_description(soup)
    if is_empty(record.sub_description):
        record.sub_description = dom_sub_description(soup)
    apply_dom_overview(soup, record)
    if is_empty(record.house_rules):
        record.house_rules = dom_house_rules(soup)
    if host_details:
        if record.host is None:
            record.host = Host()
        apply_dom_host(soup, record.host)


def extract_listing_details(
    html: str,
    url: str,
    cached_price: Optional[Price] = None,
    host_details: bool = False,
) -> ListingDetail:
    """
    Extract one listing from a prepared detail page.

    ``cached_price`` (usually the price seen on the search page) is used when
    no price can be resolved here. Host data is only read when
    ``host_details`` is set. Never raises: on an internal failure the
    identity-only record (id and url) is returned.
    """
    clean_url = clean_listing_url(url)
    token = listing_id_from_url(clean_url)
    record = ListingDetail(id=decode_opaque_id(token, kind="Listing") if token else None, url=clean_url)

    try:
        soup = make_soup(html)
        apply_primary_payloads(soup, record, host_details)

        next_data = load_script_json(soup, "__NEXT_DATA__")
        if next_data is not None:
            apply_bootstrap_payload(next_data, record, host_details)

        apply_dom_fallbacks(soup, record, host_details)

        # Redirects and interstitials carry the site name as their title.
        if record.title and is_placeholder_title(record.title):
            record.title = None

        if is_empty(record.price) and cached_price is not None:
            record.price = cached_price

        host = record.host
        if host is not None:
            if host.id and not host.profile_url:
                host.profile_url = f"{BASE_URL}/users/show/{host.id}"
            if host.host_type is None and host.is_superhost is not None:
                host.host_type = "Superhost" if host.is_superhost else "Host"
    except Exception:
        logger.exception("Error in detail extraction for %s", clean_url)
        return ListingDetail(id=record.id, url=record.url)

    return record
