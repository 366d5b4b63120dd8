"""
URL construction for search pages, shards, pagination cursors and listings.
"""
import base64
import binascii
import json
import re
from datetime import date, timedelta
from typing import Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote, unquote, urlencode, urlsplit, urlunsplit

from .models import ShardTask

BASE_URL = "https://www.airbnb.com"
ROOM_ID_RE = re.compile(r"/rooms/(\d+)")
ROOM_TOKEN_RE = re.compile(r"/rooms/([A-Za-z0-9=_-]+)")
SEARCH_QUERY_RE = re.compile(r"/s/([^/?]+)")

# Forces prices in the result set to be nightly rather than stay totals.
NIGHTLY_PRICE_PARAMS = {
    "price_filter_input_type": "2",
    "price_filter_num_nights": "1",
    "search_type": "filter_change",
}
DEFAULT_PAGE_SIZE = 20
DEFAULT_DAYS_AHEAD = 30


def listing_url(listing_id: str) -> str:
    return f"{BASE_URL}/rooms/{listing_id}"


def absolute_url(href: str) -> str:
    if href.startswith("http"):
        return href
    if not href.startswith("/"):
        href = "/" + href
    return BASE_URL + href


def listing_id_from_url(url: Optional[str]) -> Optional[str]:
    """The id segment of a ``/rooms/<id>`` URL (numeric or opaque)."""
    if not url:
        return None
    m = ROOM_TOKEN_RE.search(url)
    return m.group(1) if m else None


def numeric_listing_id(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    m = ROOM_ID_RE.search(url)
    return m.group(1) if m else None


def clean_listing_url(url: str) -> str:
    """Strip query parameters: only ``/rooms/<id>`` is kept."""
    listing_id = listing_id_from_url(url)
    return listing_url(listing_id) if listing_id else url


def is_detail_url(url: str) -> bool:
    return bool(ROOM_ID_RE.search(url))


def search_query_from_url(url: str) -> str:
    m = SEARCH_QUERY_RE.search(url)
    return unquote(m.group(1)) if m else "Unknown"


def get_query_param(url: str, name: str) -> Optional[str]:
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == name:
            return value
    return None


def set_query_params(url: str, params: Dict[str, Optional[str]]) -> str:
    """Set (or, for None values, delete) query parameters, keeping order."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        if value is None:
            query.pop(key, None)
        else:
            query[key] = str(value)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


def force_nightly_pricing(url: str, currency: Optional[str] = None) -> str:
    params: Dict[str, Optional[str]] = {}
    if currency:
        params["currency"] = currency
    params.update(NIGHTLY_PRICE_PARAMS)
    return set_query_params(url, params)


def apply_shard(url: str, shard: ShardTask, currency: Optional[str] = None) -> str:
    """Point a search URL at a shard's price window, from its first page."""
    url = set_query_params(url, {
        "price_min": str(shard.min_price) if shard.min_price is not None else None,
        "price_max": str(shard.max_price) if shard.max_price is not None else None,
        "cursor": None,
    })
    return force_nightly_pricing(url, currency)


def encode_cursor(items_offset: int, section_offset: int = 0, version: int = 1) -> str:
    payload = {"section_offset": section_offset, "items_offset": items_offset, "version": version}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


def decode_cursor_offset(cursor: Optional[str]) -> int:
    """Item offset of an opaque pagination cursor; 0 when absent or unreadable."""
    if not cursor:
        return 0
    try:
        decoded = json.loads(base64.b64decode(cursor + "=" * (-len(cursor) % 4)).decode("utf-8"))
    except (binascii.Error, ValueError):
        return 0
    if not isinstance(decoded, dict):
        return 0
    offset = decoded.get("items_offset") or 0
    return offset if isinstance(offset, int) else 0


def next_cursor_url(url: str, page_item_count: int, currency: Optional[str] = None) -> str:
    """Synthesize the next page URL by advancing the cursor's item offset."""
    offset = decode_cursor_offset(get_query_param(url, "cursor"))
    step = page_item_count if page_item_count > 0 else DEFAULT_PAGE_SIZE
    url = set_query_params(url, {
        "cursor": encode_cursor(offset + step),
        "pagination_search": "true",
    })
    return force_nightly_pricing(url, currency)


def default_stay_dates(today: Optional[date] = None) -> Tuple[str, str]:
    """A one-night stay a month out, so listed prices are nightly."""
    today = today or date.today()
    check_in = today + timedelta(days=DEFAULT_DAYS_AHEAD)
    check_out = check_in + timedelta(days=1)
    return check_in.isoformat(), check_out.isoformat()


def build_search_url(
    query: str,
    options,
    check_in: str,
    check_out: str,
    shard: Optional[ShardTask] = None,
) -> str:
    """Search URL for a location query, optionally restricted to a shard."""
    params: Dict[str, str] = {"checkin": check_in, "checkout": check_out}
    for name, value in (
        ("adults", options.adults),
        ("children", options.children),
        ("infants", options.infants),
        ("pets", options.pets),
    ):
        if value is not None:
            params[name] = str(value)

    min_price = shard.min_price if shard else options.min_price
    max_price = shard.max_price if shard else options.max_price
    if min_price is not None:
        params["price_min"] = str(min_price)
    if max_price is not None:
        params["price_max"] = str(max_price)

    for name, value in (
        ("min_beds", options.min_beds),
        ("min_bedrooms", options.min_bedrooms),
        ("min_bathrooms", options.min_bathrooms),
    ):
        if value is not None:
            params[name] = str(value)
    if options.currency:
        params["currency"] = options.currency
    params.update(NIGHTLY_PRICE_PARAMS)
    params["channel"] = "EXPLORE"

    return f"{BASE_URL}/s/{quote(query, safe='')}/homes?{urlencode(params)}"
