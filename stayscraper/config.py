"""
Run configuration: raw user input and the resolved options of one crawl.
"""
import logging
import math
import os
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Tuple

import requests

from .metering import (
    EVENT_ADDON_DETAILS,
    EVENT_ADDON_HOST_DETAILS,
    EVENT_ADDON_IMAGES,
    EVENT_ADDON_REVIEWS,
)
from .urls import default_stay_dates

logger = logging.getLogger(__name__)

EXCHANGE_RATE_API = os.getenv("STAYSCRAPER_RATES_URL", "https://api.exchangerate-api.com/v4/latest/USD")
EXCHANGE_RATE_TIMEOUT = 10.0

# Units of each currency per 1 USD, used when the rates API is unreachable.
FALLBACK_CURRENCY_MULTIPLIERS = {
    "USD": 1, "EUR": 0.9, "GBP": 0.8, "AUD": 1.5, "CAD": 1.4,
    "JPY": 150, "KRW": 1300, "INR": 83, "IDR": 15500, "VND": 25000,
    "THB": 36, "PHP": 56, "TWD": 32, "TRY": 30, "CNY": 7.2,
    "BRL": 5.0, "MXN": 17, "SAR": 3.75, "AED": 3.67, "ZAR": 19,
    "CHF": 0.9, "NZD": 1.6, "SGD": 1.35,
}

DEFAULT_STEP_USD = 5
SAFETY_MAX_PRICE = 10000
DEFAULT_LOCATION = "London"


@dataclass
class CrawlInput:
    """User input as given, before defaults and price-range resolution."""

    location_queries: List[str] = field(default_factory=lambda: [DEFAULT_LOCATION])
    start_urls: List[str] = field(default_factory=list)
    max_listings: Optional[int] = None
    simple_mode: bool = True
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    check_in: Optional[str] = None
    check_out: Optional[str] = None
    currency: str = "USD"
    add_on_reviews: bool = False
    add_on_images: bool = False
    add_on_details: bool = False
    add_on_host_details: bool = False
    adults: Optional[int] = None
    children: Optional[int] = None
    infants: Optional[int] = None
    pets: Optional[int] = None
    min_beds: Optional[int] = None
    min_bedrooms: Optional[int] = None
    min_bathrooms: Optional[int] = None
    price_sharding_step: Optional[int] = None
    enable_horizontal_scaling: Optional[bool] = None


@dataclass(frozen=True)
class CrawlOptions:
    """Resolved, immutable settings shared by every task of a run."""

    location_queries: Tuple[str, ...]
    start_urls: Tuple[str, ...]
    max_listings: Optional[int]
    simple_mode: bool
    currency: str
    check_in: str
    check_out: str
    min_price: Optional[int]
    max_price: Optional[int]
    price_sharding_step: int
    enable_horizontal_scaling: bool
    add_on_reviews: bool = False
    add_on_images: bool = False
    add_on_details: bool = False
    add_on_host_details: bool = False
    adults: Optional[int] = None
    children: Optional[int] = None
    infants: Optional[int] = None
    pets: Optional[int] = None
    min_beds: Optional[int] = None
    min_bedrooms: Optional[int] = None
    min_bathrooms: Optional[int] = None

    @property
    def global_min_price(self) -> Optional[int]:
        return self.min_price

    @property
    def global_max_price(self) -> Optional[int]:
        return self.max_price

    @property
    def needs_deep_scrape(self) -> bool:
        """Any enrichment requires a visit to the detail page."""
        return (
            not self.simple_mode
            or self.add_on_images
            or self.add_on_reviews
            or self.add_on_details
            or self.add_on_host_details
        )

    @property
    def should_shard(self) -> bool:
        return (
            self.enable_horizontal_scaling
            and self.min_price is not None
            and self.max_price is not None
            and self.max_price > self.min_price
        )

    def addon_events(self) -> List[str]:
        events = []
        if self.add_on_details:
            events.append(EVENT_ADDON_DETAILS)
        if self.add_on_host_details:
            events.append(EVENT_ADDON_HOST_DETAILS)
        if self.add_on_images:
            events.append(EVENT_ADDON_IMAGES)
        if self.add_on_reviews:
            events.append(EVENT_ADDON_REVIEWS)
        return events

    def describe(self) -> str:
        mode = "FAST (Simple)" if self.simple_mode else "DETAILED (Deep)"
        add_ons = " ".join(name for flag, name in (
            (self.add_on_reviews, "+Reviews"),
            (self.add_on_images, "+Images"),
            (self.add_on_details, "+Details"),
            (self.add_on_host_details, "+HostDetails"),
        ) if flag)
        limit = "unlimited" if self.max_listings is None else str(self.max_listings)
        return f"Mode: {mode} {add_ons} | Limit: {limit}".replace("  ", " ")


def fetch_exchange_rate(currency: str, timeout: float = EXCHANGE_RATE_TIMEOUT) -> float:
    """Units of ``currency`` per 1 USD, from the live API or the offline table."""
    if currency == "USD":
        return 1.0
    try:
        resp = requests.get(EXCHANGE_RATE_API, timeout=timeout)
        resp.raise_for_status()
        rate = (resp.json().get("rates") or {}).get(currency)
        if isinstance(rate, (int, float)) and rate > 0:
            return float(rate)
        raise ValueError(f"Currency {currency} not found in API response")
    except (requests.RequestException, ValueError) as e:
        logger.warning("[CURRENCY] Using fallback exchange rate for %s (%s)", currency, e)
        return float(FALLBACK_CURRENCY_MULTIPLIERS.get(currency, 1))


def default_sharding_step(exchange_rate: float) -> int:
    """The USD base step scaled into the target currency."""
    return max(1, math.ceil(DEFAULT_STEP_USD * exchange_rate))


def _resolve_dates(check_in: Optional[str], check_out: Optional[str]) -> Tuple[str, str]:
    if not check_in:
        return default_stay_dates()
    if not check_out:
        check_out = (date.fromisoformat(check_in) + timedelta(days=1)).isoformat()
    return check_in, check_out


def resolve_options(inp: CrawlInput, exchange_rate: Optional[float] = None) -> CrawlOptions:
    """
    Apply defaults and the price-range rules.

    - An unlimited run with no price range shards ``[0, SAFETY_MAX_PRICE]``.
    - A minimum price alone gets a ``SAFETY_MAX_PRICE`` ceiling and turns
      sharding on unless it was explicitly disabled.
    - A maximum price alone starts from 0.
    - An empty or inverted range disables sharding.
    """
    max_listings = inp.max_listings if inp.max_listings and inp.max_listings > 0 else None
    if inp.price_sharding_step and inp.price_sharding_step > 0:
        step = inp.price_sharding_step
    else:
        step = default_sharding_step(exchange_rate if exchange_rate is not None else 1.0)

    enable = bool(inp.enable_horizontal_scaling)
    min_price, max_price = inp.min_price, inp.max_price

    if max_listings is None and min_price is None and max_price is None:
        enable = True
        min_price, max_price = 0, SAFETY_MAX_PRICE
        logger.info("[CONFIG] Unlimited run: sharding prices over 0-%d", SAFETY_MAX_PRICE)

    if min_price is not None or enable:
        if min_price is not None and inp.enable_horizontal_scaling is not False:
            enable = True
        if min_price is not None and max_price is None:
            max_price = SAFETY_MAX_PRICE
        elif min_price is None and max_price is None:
            min_price, max_price = 0, SAFETY_MAX_PRICE
        elif min_price is None:
            min_price = 0
        if min_price >= max_price:
            logger.warning("[CONFIG] Invalid price range %s-%s. Disabling price sharding.", min_price, max_price)
            enable = False

    check_in, check_out = _resolve_dates(inp.check_in, inp.check_out)
    queries = tuple(q.strip() for q in inp.location_queries if q and q.strip())

    return CrawlOptions(
        location_queries=queries,
        start_urls=tuple(inp.start_urls),
        max_listings=max_listings,
        simple_mode=inp.simple_mode,
        currency=inp.currency,
        check_in=check_in,
        check_out=check_out,
        min_price=min_price,
        max_price=max_price,
        price_sharding_step=step,
        enable_horizontal_scaling=enable,
        add_on_reviews=inp.add_on_reviews,
        add_on_images=inp.add_on_images,
        add_on_details=inp.add_on_details,
        add_on_host_details=inp.add_on_host_details,
        adults=inp.adults,
        children=inp.children,
        infants=inp.infants,
        pets=inp.pets,
        min_beds=inp.min_beds,
        min_bedrooms=inp.min_bedrooms,
        min_bathrooms=inp.min_bathrooms,
    )
