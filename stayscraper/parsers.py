"""
Pure text parsers for the heuristic fields of a listing.

Every parser takes a string and returns a value or an explicit "nothing
found" result (None, or an empty amount for prices). None of them raise on
unexpected input.

Accepted patterns:

- prices: "$150", "$150 / night", "$900 total for 6 nights", "€1,234.50"
- room composition: "2 guests · 1 bedroom · 3 beds · 1.5 baths",
  "Studio", "Half-bath", "1 shared bath"
- opaque ids: base64 of "<Kind>:<digits>" (e.g. "StayListing:1234")
- host cards: "Hosted by Maria", "Maria · Superhost" (or badge on the next line), "8 years hosting",
  "Hosting for 6 years", "Joined in May 2015"
"""
import base64
import binascii
import math
import re
from dataclasses import dataclass
from typing import Optional

from .models import Price
from .utils import clean_text, current_year


SYMBOL_CURRENCIES = {
    "$": "USD",
    "€": "EUR",
    "£": "GBP",
    "₹": "INR",
    "¥": "JPY",
    "฿": "THB",
}
KNOWN_CURRENCY_CODES = frozenset([
    "USD", "EUR", "GBP", "AUD", "CAD", "JPY", "KRW", "INR", "IDR", "VND",
    "THB", "PHP", "TWD", "TRY", "CNY", "BRL", "MXN", "SAR", "AED", "ZAR",
    "CHF", "NZD", "SGD",
])

PRICE_BOILERPLATE_RE = re.compile(r"Show price breakdown|Show total price", re.I)
PRICE_RE = re.compile(r"([$€£₹¥฿]?)\s*(\d[\d,]*(?:\.\d+)?)")
CURRENCY_CODE_RE = re.compile(r"\b([A-Z]{3})\b")
NIGHTS_RE = re.compile(r"(\d+)\s+nights?", re.I)
FOR_NIGHTS_RE = re.compile(r"for\s+(\d+)\s+nights?", re.I)
PER_NIGHT_RE = re.compile(r"(?:/|\bper|\ba)\s*night\b", re.I)

GUESTS_RE = re.compile(r"(\d+)\s+guests?", re.I)
BEDROOMS_RE = re.compile(r"(\d+)\s+bedrooms?", re.I)
BEDS_RE = re.compile(r"(\d+)\s+bed(?!room)", re.I)
BATHS_RE = re.compile(r"(\d+(?:\.\d+)?)\s+(?:shared\s+|private\s+)?(?:half-)?bath", re.I)
LOCATION_RE = re.compile(r"\b(?:in|at)\s+([^·★\d]+)", re.I)
ROOM_TYPE_RE = re.compile(
    r"^((?:Entire|Private|Shared)(?:\s+(?!(?:in|near)\b)[\w-]+){1,3}|Room)\b", re.I
)
STAR_RATING_RE = re.compile(r"★\s*(\d+(?:\.\d+)?)")

HOSTED_BY_RE = re.compile(r"Hosted by\s+([^\r\n]+)", re.I)
MEET_HOST_RE = re.compile(r"Meet your host", re.I)
# A name alone on its line, with the badge on the same line after a dot or on the next one.
HOST_ROLE_RE = re.compile(
    r"^(?!(?:Superhost|Host)\b)([A-Z][a-z]+)[ \t]*(?:[·•][ \t]*|\n\s*)(?:Superhost|Host)\b", re.M
)
YEARS_HOSTING_RE = re.compile(r"(\d+)\+?\s+Years?\s+hosting", re.I)
HOSTING_FOR_RE = re.compile(r"Hosting for\s+(\d+)\s+years?", re.I)
JOINED_RE = re.compile(r"Joined(?: in)?\s+(?:[A-Z][a-z]+\s+)?(\d{4})", re.I)

GENERIC_TITLE_RE = re.compile(
    r"^(?:Room|Home|(?:Entire|Private|Shared)(?:\s+[\w-]+){0,3})\s+(?:in|near)\s+", re.I
)
GENERIC_TITLE_MAX_LEN = 40

BLOCK_MARKERS = ("Access Denied", "Security Check", "Press and hold")


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------

def clean_price_label(text: Optional[str]) -> str:
    if not text:
        return ""
    return clean_text(PRICE_BOILERPLATE_RE.sub(" ", str(text)))


def _currency_from_label(label: str, symbol: str) -> Optional[str]:
    if symbol:
        return SYMBOL_CURRENCIES.get(symbol)
    m = CURRENCY_CODE_RE.search(label)
    if m and m.group(1) in KNOWN_CURRENCY_CODES:
        return m.group(1)
    return None


def _nights_marker(label: str, qualifier: str) -> Optional[int]:
    """Number of nights a total covers, or None when the price is nightly."""
    q = qualifier.lower()
    qm = NIGHTS_RE.search(q)
    tm = FOR_NIGHTS_RE.search(label) or NIGHTS_RE.search(label)
    if qm:
        n = int(qm.group(1))
    elif tm:
        n = int(tm.group(1))
    else:
        return None
    lowered = label.lower()
    if "total" in lowered or "nights" in lowered or "nights" in q:
        return n
    return None


def parse_price(
    text: Optional[str],
    qualifier: Optional[str] = "",
    nights: Optional[int] = None,
    currency: Optional[str] = None,
) -> Price:
    """
    Parse a localized price string into a nightly Price.

    Totals ("$900 total for 6 nights", or a qualifier such as "for 6 nights")
    are divided by the number of nights. ``nights`` overrides the detected
    count. A label that says "/ night" is always taken as nightly.
    """
    label = clean_price_label(text)
    m = PRICE_RE.search(label)
    if not m:
        return Price(amount="", currency=currency or _currency_from_label(label, ""), label=label)

    try:
        amount = float(m.group(2).replace(",", ""))
    except ValueError:
        amount = 0.0

    if not PER_NIGHT_RE.search(label):
        n = nights if nights is not None else _nights_marker(label, qualifier or "")
        if n and n > 1 and amount > 0:
            amount = amount / n

    return Price(
        amount=str(math.floor(amount + 0.5)) if amount > 0 else "",
        currency=currency or _currency_from_label(label, m.group(1)),
        label=label,
    )


# ---------------------------------------------------------------------------
# Room composition
# ---------------------------------------------------------------------------

@dataclass
class RoomComposition:
    guests: Optional[int] = None
    bedrooms: Optional[int] = None
    beds: Optional[int] = None
    bathrooms: Optional[float] = None


def parse_room_composition(text: Optional[str]) -> RoomComposition:
    """Read "2 guests · 1 bedroom · 3 beds · 1 bath" style summaries."""
    result = RoomComposition()
    if not text:
        return result
    text = str(text)

    m = GUESTS_RE.search(text)
    if m:
        result.guests = int(m.group(1))

    m = BEDROOMS_RE.search(text)
    if m:
        result.bedrooms = int(m.group(1))
    elif "studio" in text.lower():
        result.bedrooms = 0

    m = BEDS_RE.search(text)
    if m:
        result.beds = int(m.group(1))

    m = BATHS_RE.search(text)
    if m:
        bath = float(m.group(1))
        result.bathrooms = int(bath) if bath.is_integer() else bath
    elif "half-bath" in text.lower():
        result.bathrooms = 0.5

    return result


def parse_location_hint(text: Optional[str]) -> Optional[str]:
    """"Entire condo in Rome · 2 bedrooms" -> "Rome"."""
    if not text:
        return None
    m = LOCATION_RE.search(str(text))
    if not m:
        return None
    return clean_text(m.group(1)) or None


def parse_room_type(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = ROOM_TYPE_RE.match(clean_text(str(text)))
    return m.group(1) if m else None


def parse_star_rating(text: Optional[str]) -> Optional[float]:
    if not text:
        return None
    m = STAR_RATING_RE.search(str(text))
    return float(m.group(1)) if m else None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

def _b64decode(token: str) -> Optional[str]:
    padded = token + "=" * (-len(token) % 4)
    try:
        if "-" in token or "_" in token:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded)
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="ignore")


def decode_opaque_id(raw, kind: Optional[str] = None) -> Optional[str]:
    """
    Resolve a listing/user id.

    Digits are returned unchanged. Opaque tokens are base64-decoded and the
    digits of a ``Kind:digits`` pattern extracted; when nothing matches the
    raw token is kept.
    """
    if raw is None or isinstance(raw, bool):
        return None
    token = str(raw).strip()
    if not token:
        return None
    if token.isdigit():
        return token
    decoded = _b64decode(token)
    if decoded:
        pattern = rf"{re.escape(kind)}:(\d+)" if kind else r"[A-Za-z]+:(\d+)"
        m = re.search(pattern, decoded, re.I)
        if m:
            return m.group(1)
    return token


# ---------------------------------------------------------------------------
# Host card text
# ---------------------------------------------------------------------------

@dataclass
class HostText:
    name: Optional[str] = None
    years_hosting: Optional[int] = None
    is_superhost: Optional[bool] = None


def parse_host_text(text: Optional[str], year: Optional[int] = None) -> HostText:
    """Read the free text of a "Meet your host" card."""
    result = HostText()
    if not text:
        return result

    m = HOSTED_BY_RE.search(text)
    if m:
        name = re.split(r"[\n\r]|Joined|•|·", m.group(1))[0].strip()
        if name:
            result.name = name
    if not result.name:
        m = HOST_ROLE_RE.search(MEET_HOST_RE.sub("", text))
        if m:
            result.name = m.group(1)

    m = YEARS_HOSTING_RE.search(text) or HOSTING_FOR_RE.search(text)
    if m:
        result.years_hosting = int(m.group(1))
    else:
        m = JOINED_RE.search(text)
        if m:
            result.years_hosting = (year or current_year()) - int(m.group(1))

    result.is_superhost = "Superhost" in text
    return result


# ---------------------------------------------------------------------------
# Titles and page state
# ---------------------------------------------------------------------------

def is_generic_title(title: Optional[str]) -> bool:
    """True for category labels like "Room in London" that name no listing."""
    t = clean_text(title)
    return bool(GENERIC_TITLE_RE.match(t)) and len(t) < GENERIC_TITLE_MAX_LEN


def is_placeholder_title(title: Optional[str]) -> bool:
    """True for the site-wide titles served on redirects and interstitials."""
    t = clean_text(title)
    return t == "Airbnb" or t.startswith("Airbnb: ") or t.startswith("Holiday Rentals")


def title_from_document_title(doc_title: Optional[str]) -> Optional[str]:
    """"Listing Name - Type - Place - Airbnb" -> "Listing Name"."""
    t = clean_text(doc_title)
    if " - " not in t:
        return None
    first = t.split(" - ")[0].strip()
    return first if len(first) > 3 else None


def title_from_og_title(content: Optional[str]) -> Optional[str]:
    """"Listing Name · ★4.83 · 2 bedrooms" -> "Listing Name"."""
    t = clean_text(content)
    if "·" in t:
        first = t.split("·")[0].strip()
        return first if len(first) > 3 else None
    return t if len(t) > 3 else None


def find_block_marker(html: Optional[str]) -> Optional[str]:
    """Return the anti-bot phrase present in the page, if any."""
    if not html:
        return None
    for marker in BLOCK_MARKERS:
        if marker in html:
            return marker
    return None
