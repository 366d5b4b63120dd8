"""
Listing record normalizer.

Turns located payload nodes and DOM reads into canonical ListingSummary /
ListingDetail fields. Each field category has an ordered chain of sources;
the first source that yields a value wins and a field that is already set is
never overwritten by a later (lower priority) source, so applying a chain
twice to the same input changes nothing.
"""
import json
import re
from typing import Any, Dict, Iterable, Optional

from bs4 import BeautifulSoup, Tag

from .locator import FieldRule, first_value, get_path, resolve_fields, typename
from .models import Amenity, Coordinates, Host, ListingDetail, ListingSummary, Price, is_empty
from .parsers import (
    decode_opaque_id,
    is_generic_title,
    is_placeholder_title,
    parse_host_text,
    parse_location_hint,
    parse_price,
    parse_room_composition,
    parse_room_type,
    parse_star_rating,
    title_from_document_title,
    title_from_og_title,
)
from .urls import BASE_URL, listing_url
from .utils import clean_text, current_year, strip_tags, to_count, to_float, to_int


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return clean_text(value) or None
    return None


def _currency_code(value: Any) -> Optional[str]:
    if isinstance(value, str) and re.fullmatch(r"[A-Za-z]{3}", value.strip()):
        return value.strip().upper()
    return None


def _bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    return None


def _set_once(obj: Any, attr: str, value: Any) -> None:
    if value is None or is_empty(value):
        return
    if is_empty(getattr(obj, attr)):
        setattr(obj, attr, value)


# ---------------------------------------------------------------------------
# Search result cards
# ---------------------------------------------------------------------------

LISTING_ID_PATHS = ("listingId", "id", "listing.id", "demandStayListing.id")

SUMMARY_RULES = (
    FieldRule("title", ("listing.name", "listing.title", "name", "title", "subtitle"), _text),
    FieldRule("rating", (
        "listing.avgRating", "listing.rating", "listing.starRating",
        "avgRating", "rating", "starRating", "avgRatingLocalized",
    ), to_float),
    FieldRule("reviews_count", (
        "listing.reviewsCount", "listing.reviewCount", "reviewsCount", "reviewCount",
    ), to_int),
    FieldRule("room_type", (
        "listing.roomType", "listing.roomTitle", "listing.roomAndPropertyType",
        "roomType", "listingObjType",
    ), _text),
    FieldRule("thumbnail", (
        "listing.pictureUrl", "listing.contextualPictures.0.picture", "listing.mediaItems.0.baseUrl",
        "pictureUrl", "contextualPictures.0.picture", "mediaItems.0.baseUrl", "thumbnailUrl",
    ), _text),
    FieldRule("beds", ("listing.beds", "beds"), to_int),
    FieldRule("bedrooms", ("listing.bedrooms", "bedrooms"), to_int),
    FieldRule("bathrooms", ("listing.bathrooms", "bathrooms"), to_count),
    FieldRule("person_capacity", (
        "listing.personCapacity", "personCapacity", "listing.guestCapacity", "guestCapacity",
    ), to_int),
    FieldRule("location", ("listing.city", "listing.location", "city", "location", "listing.publicAddress"), _text),
)

KICKER_PATHS = (
    "kickerContent.messages.0.body", "kickerContent.body",
    "listing.kickerContent.messages.0.body", "listing.kickerContent.body",
    "listingObjType",
)
STRUCTURED_CONTENT_PATHS = ("structuredContent", "listing.structuredContent")
SEARCH_PRICE_PATHS = ("structuredDisplayPrice", "listingPrice", "price")


def resolve_listing_id(node: Dict[str, Any]) -> Optional[str]:
    raw = first_value(node, LISTING_ID_PATHS)
    if isinstance(raw, (dict, list)):
        return None
    return decode_opaque_id(raw, kind="Listing")


def apply_composition_text(record: ListingSummary, text: Optional[str], with_location: bool = False) -> None:
    """Fill unset capacity fields (and optionally location) from summary text."""
    if not text:
        return
    comp = parse_room_composition(text)
    _set_once(record, "bedrooms", comp.bedrooms)
    _set_once(record, "beds", comp.beds)
    _set_once(record, "bathrooms", comp.bathrooms)
    _set_once(record, "person_capacity", comp.guests)
    if with_location:
        _set_once(record, "location", parse_location_hint(text))


def _mentions_night(line: Any) -> bool:
    if not isinstance(line, dict):
        return False
    text = line.get("price") or line.get("accessibilityLabel") or ""
    return isinstance(text, str) and "night" in text.lower()


def price_from_display(structured: Any, currency: Optional[str] = None) -> Optional[Price]:
    """
    Read a structured display price block.

    The line mentioning "night" is preferred (secondary first), else the
    primary line.
    """
    if not isinstance(structured, dict):
        return None
    primary = structured.get("primaryLine")
    secondary = structured.get("secondaryLine")
    line = secondary if _mentions_night(secondary) else primary
    if not isinstance(line, dict):
        return None
    text = line.get("price") or line.get("accessibilityLabel") or line.get("amountWithSymbol") or ""
    if not isinstance(text, str):
        return None
    qualifier = line.get("qualifier")
    return parse_price(text, qualifier=qualifier if isinstance(qualifier, str) else "", currency=currency)


def summary_from_node(node: Dict[str, Any], currency: Optional[str] = None) -> Optional[ListingSummary]:
    """Normalize one search result node; None when it carries no id."""
    listing_id = resolve_listing_id(node)
    if not listing_id:
        return None

    summary = ListingSummary(id=listing_id, url=listing_url(listing_id))
    resolve_fields(node, SUMMARY_RULES, summary)

    kicker = first_value(node, KICKER_PATHS)
    if isinstance(kicker, str):
        apply_composition_text(summary, kicker, with_location=True)

    structured = first_value(node, STRUCTURED_CONTENT_PATHS)
    if structured is not None:
        text = structured if isinstance(structured, str) else json.dumps(structured)
        apply_composition_text(summary, text)

    summary.price = price_from_display(first_value(node, SEARCH_PRICE_PATHS), currency)
    return summary


# ---------------------------------------------------------------------------
# Detail payload nodes
# ---------------------------------------------------------------------------

DETAIL_NODE_RULES = (
    FieldRule("currency", ("currency", "curr"), _currency_code),
    FieldRule("locale", ("locale", "language", "descriptionLanguage"), _text),
    FieldRule("person_capacity", ("personCapacity",), to_int),
    FieldRule("bedrooms", ("bedrooms",), to_int),
    FieldRule("beds", ("beds",), to_int),
    FieldRule("bathrooms", ("bathrooms",), to_count),
)

DESCRIPTION_SECTIONS = ("PdpDescriptionSection", "DescriptionSection")
OVERVIEW_SECTIONS = ("OverviewDefaultSection", "OverviewSection")
POLICY_SECTIONS = ("PoliciesSection", "HouseRulesSection")
DETAIL_PRICE_PATHS = ("structuredStayDisplayPrice", "structuredDisplayPrice")


def accept_title(record: ListingSummary, candidate: Any) -> bool:
    """Set the title unless one is set or the candidate is generic."""
    title = _text(candidate)
    if not title or not is_empty(record.title):
        return False
    if is_generic_title(title) or is_placeholder_title(title):
        return False
    record.title = title
    return True


def coordinates_from_node(node: Dict[str, Any]) -> Optional[Coordinates]:
    lat, lng = to_float(node.get("lat")), to_float(node.get("lng"))
    if lat and lng:
        return Coordinates(latitude=lat, longitude=lng)
    lat = to_float(get_path(node, "coordinate.latitude"))
    lng = to_float(get_path(node, "coordinate.longitude"))
    if lat and lng:
        return Coordinates(latitude=lat, longitude=lng)
    return None


def _title_candidates(node: Dict[str, Any]) -> Iterable[Any]:
    if typename(node) in ("StayListing", "Listing"):
        name = node.get("name") or node.get("title")
        if isinstance(name, str) and len(name) > 5 and "·" not in name:
            yield name
    sharing = node.get("sharingConfig")
    if isinstance(sharing, dict):
        clean = sharing.get("listingName") or sharing.get("name")
        if isinstance(clean, str) and len(clean) > 3:
            yield clean
        title = sharing.get("title")
        if isinstance(title, str) and "·" not in title:
            yield title


def _description_from_node(node: Dict[str, Any]) -> Optional[str]:
    if typename(node) in DESCRIPTION_SECTIONS:
        desc = node.get("htmlDescription") or node.get("description")
        if isinstance(desc, dict):
            desc = desc.get("htmlText")
        if isinstance(desc, str) and len(desc) > 20:
            return strip_tags(desc)
    for key in ("description", "listingDescription"):
        value = node.get(key)
        if isinstance(value, str) and len(value) > 50:
            return clean_text(value)
    return None


def _house_rules_from_node(node: Dict[str, Any]) -> Optional[str]:
    if typename(node) not in POLICY_SECTIONS:
        return None
    rules = []
    for key in ("houseRules", "listItems"):
        items = node.get(key)
        if not isinstance(items, list):
            continue
        for item in items:
            if isinstance(item, str):
                text = item
            elif isinstance(item, dict):
                text = item.get("title") or item.get("text") or ""
            else:
                text = ""
            if isinstance(text, str) and text.strip():
                rules.append(text.strip())
    return " | ".join(rules) if rules else None


def _collect_images(node: Dict[str, Any], record: ListingDetail) -> None:
    items = node.get("mediaItems") or node.get("previewImages")
    if not isinstance(items, list):
        return
    for item in items:
        if not isinstance(item, dict):
            continue
        src = item.get("baseUrl") or item.get("url")
        if isinstance(src, str) and src and src not in record.images:
            record.images.append(src)


def _add_amenity(record: ListingDetail, item: Any) -> None:
    if isinstance(item, str):
        name, available = item, True
    elif isinstance(item, dict):
        name = item.get("name") or item.get("title")
        available = item.get("isPresent") is not False and item.get("available") is not False
    else:
        return
    if not isinstance(name, str) or not name.strip():
        return
    if any(a.title == name for a in record.amenities):
        return
    record.amenities.append(Amenity(title=name, available=available))


def _collect_amenities(node: Dict[str, Any], record: ListingDetail) -> None:
    amenities = node.get("amenities") or node.get("listingAmenities")
    if isinstance(amenities, list):
        for item in amenities:
            _add_amenity(record, item)
    groups = node.get("amenityGroups")
    if isinstance(groups, list):
        for group in groups:
            if isinstance(group, dict) and isinstance(group.get("amenities"), list):
                for item in group["amenities"]:
                    _add_amenity(record, item)


def apply_host_node(node: Dict[str, Any], host: Host) -> None:
    """Fold one payload node's host fields into ``host`` (unset fields only)."""
    card = node.get("cardData")
    if isinstance(card, dict) and typename(node) == "MeetYourHostSection":
        host_id = decode_opaque_id(card.get("userId"))
        if host_id and host.id is None:
            host.id = host_id
            host.profile_url = f"{BASE_URL}/users/show/{host_id}"
        _set_once(host, "name", _text(card.get("name")))
        _set_once(host, "is_superhost", _bool(card.get("isSuperhost")))
        _set_once(host, "thumbnail", _text(card.get("profilePictureUrl")))
        stats = card.get("stats")
        if isinstance(stats, list):
            for stat in stats:
                if isinstance(stat, dict) and stat.get("type") == "YEARS_HOSTING":
                    _set_once(host, "years_hosting", to_int(stat.get("value")))

    pdp = node.get("pdpContext")
    if isinstance(pdp, dict) and pdp.get("hostId"):
        _set_once(host, "id", str(pdp["hostId"]))
        _set_once(host, "is_superhost", _bool(pdp.get("isSuperHost")))

    raw_id = node.get("hostUserId") or node.get("host_user_id") or get_path(node, "host.id")
    if raw_id is not None and not isinstance(raw_id, (dict, list)):
        _set_once(host, "id", decode_opaque_id(raw_id))
        _set_once(host, "name", _text(first_value(node, ("host.firstName", "host.name", "host.displayName"))))

    if typename(node) == "User" and node.get("id"):
        _set_once(host, "id", decode_opaque_id(node.get("id")))
        _set_once(host, "name", _text(first_value(node, ("firstName", "name", "displayName"))))


def apply_detail_node(node: Dict[str, Any], record: ListingDetail, host_details: bool = False) -> None:
    """Fold one node of a detail payload into the record, first match wins."""
    resolve_fields(node, DETAIL_NODE_RULES, record)
    _collect_images(node, record)
    _collect_amenities(node, record)

    if record.coordinates is None:
        record.coordinates = coordinates_from_node(node)
    if typename(node) == "LocationSection":
        _set_once(record, "location", _text(node.get("subtitle")))

    if is_empty(record.price):
        structured = first_value(node, DETAIL_PRICE_PATHS)
        if isinstance(structured, dict) and isinstance(structured.get("primaryLine"), dict):
            line = structured["primaryLine"]
            text = line.get("accessibilityLabel") or line.get("price") or line.get("amountWithSymbol")
            if isinstance(text, str) and text:
                qualifier = line.get("qualifier")
                record.price = parse_price(
                    text,
                    qualifier=qualifier if isinstance(qualifier, str) else "",
                    currency=record.currency,
                )

    for candidate in _title_candidates(node):
        if accept_title(record, candidate):
            break

    _set_once(record, "description", _description_from_node(node))
    if typename(node) in OVERVIEW_SECTIONS:
        _set_once(record, "sub_description", _text(node.get("detailsSummary") or node.get("subtitle")))
    _set_once(record, "house_rules", _house_rules_from_node(node))

    if host_details:
        if record.host is None:
            record.host = Host()
        apply_host_node(node, record.host)


# ---------------------------------------------------------------------------
# Secondary bootstrap payload (#__NEXT_DATA__)
# ---------------------------------------------------------------------------

BOOTSTRAP_LISTING_RULES = (
    FieldRule("person_capacity", ("personCapacity",), to_int),
    FieldRule("bedrooms", ("bedrooms",), to_int),
    FieldRule("beds", ("beds",), to_int),
    FieldRule("bathrooms", ("bathrooms",), to_count),
)
HOST_NAME_KEYS = ("firstName", "name", "displayName")


def _years_since(value: Any) -> Optional[int]:
    m = re.search(r"(\d{4})", str(value or ""))
    if not m:
        return None
    return current_year() - int(m.group(1))


def _apply_person(person: Any, host: Host) -> None:
    if not isinstance(person, dict):
        return
    if person.get("id") is not None:
        _set_once(host, "id", decode_opaque_id(person.get("id")))
    _set_once(host, "name", _text(first_value(person, HOST_NAME_KEYS)))
    _set_once(host, "is_superhost", _bool(person.get("isSuperhost")))


def apply_bootstrap_payload(next_data: Any, record: ListingDetail, host_details: bool = False) -> None:
    """Fill what the primary payload missed from the Next.js bootstrap data."""
    page_props = get_path(next_data, "props.pageProps")
    if not isinstance(page_props, dict):
        return

    listing = get_path(page_props, "bootstrapData.layout.stayPdpLayoutData.listing")
    if isinstance(listing, dict):
        resolve_fields(listing, BOOTSTRAP_LISTING_RULES, record)
        if record.coordinates is None:
            record.coordinates = coordinates_from_node(listing)

    if not host_details:
        return
    if record.host is None:
        record.host = Host()
    host = record.host

    person_id = get_path(page_props, "bootstrapData.metadata.sharingConfig.personId")
    if person_id is not None:
        _set_once(host, "id", str(person_id))

    host_user = get_path(page_props, "bootstrapData.layout.hostUser")
    if isinstance(host_user, dict):
        _apply_person(host_user, host)
        _set_once(host, "years_hosting", to_int(host_user.get("yearsHosting")))
        if host_user.get("createdAt"):
            _set_once(host, "years_hosting", _years_since(host_user["createdAt"]))

    if isinstance(listing, dict):
        _apply_person(listing.get("user"), host)
        _apply_person(listing.get("host"), host)

    primary = get_path(page_props, "bootstrapData.layout.stayPdpLayoutData.primaryHost")
    if isinstance(primary, dict):
        _set_once(host, "name", _text(first_value(primary, ("name", "firstName", "displayName"))))
        _set_once(host, "years_hosting", to_int(primary.get("yearsOnAirbnb")))
        if primary.get("memberSince"):
            _set_once(host, "years_hosting", _years_since(primary["memberSince"]))


# ---------------------------------------------------------------------------
# DOM fallbacks
# ---------------------------------------------------------------------------

OVERVIEW_TEXT_RE = re.compile(r"\d+\s+(guest|bed|bath)", re.I)
ROOM_TYPE_LINE_RE = re.compile(r"^(Room|Entire|Private|Shared).{5,60}$", re.I)
SHOW_MORE_RE = re.compile(r"Show more|Hide|Read more", re.I)
HOST_PROFILE_SELECTOR = (
    'a[aria-label="Go to Host full profile"], a[href*="/users/show/"], a[href*="/users/profile/"]'
)
HOST_PROFILE_ID_RE = re.compile(r"/users/(?:show|profile)/(\d+)")
HOST_CARD_MARKERS = ("Years hosting", "Host details", "Co-Hosts")


def _el_text(el: Optional[Tag], separator: str = " ") -> str:
    if el is None:
        return ""
    return clean_text(el.get_text(separator))


def _usable_title(title: Optional[str]) -> bool:
    return bool(title) and not is_generic_title(title) and not is_placeholder_title(title)


def dom_title(soup: BeautifulSoup) -> Optional[str]:
    """Page heading, then the document title, then og:title."""
    h1 = _el_text(soup.find("h1"))
    if _usable_title(h1):
        return h1
    doc_title = soup.title.get_text() if soup.title else ""
    title = title_from_document_title(doc_title)
    if _usable_title(title):
        return title
    og = soup.find("meta", attrs={"property": "og:title"})
    if og is not None:
        title = title_from_og_title(og.get("content"))
        if _usable_title(title):
            return title
    return None


def dom_description(soup: BeautifulSoup) -> Optional[str]:
    section = soup.select_one('div[data-section-id="DESCRIPTION_DEFAULT"]')
    text = _el_text(section)
    if len(text) > 50:
        text = clean_text(SHOW_MORE_RE.sub("", re.sub(r"About this (place|space)", "", text, flags=re.I)))
        if len(text) > 20:
            return text

    for heading in soup.find_all(["h2", "h3"]):
        heading_text = _el_text(heading)
        if "About this" not in heading_text and "About the" not in heading_text:
            continue
        sibling = heading.find_next_sibling()
        attempts = 0
        while sibling is not None and attempts < 5:
            sib_text = _el_text(sibling)
            if sibling.name == "div" and sibling.find("button") is None and len(sib_text) > 50:
                return clean_text(re.sub(r"Show more|Hide", "", sib_text, flags=re.I))
            sibling = sibling.find_next_sibling()
            attempts += 1
        break

    for div in soup.select('div[data-section-id*="description"], div[class*="description"]'):
        text = _el_text(div)
        if len(text) > 100:
            return clean_text(re.sub(r"Show more.*$", "", text, flags=re.I))
    return None


def dom_sub_description(soup: BeautifulSoup) -> Optional[str]:
    text = _el_text(soup.select_one('div[data-section-id="OVERVIEW_DEFAULT_V2"]'))
    if 5 < len(text) < 300:
        return text

    h1 = soup.find("h1")
    if h1 is not None:
        text = _el_text(h1.find_next_sibling())
        if 5 < len(text) < 100:
            return text

    for el in soup.find_all(["span", "div"]):
        text = _el_text(el)
        if ROOM_TYPE_LINE_RE.match(text):
            return text
    return None


def dom_overview_text(soup: BeautifulSoup) -> Optional[str]:
    """The "2 guests · 1 bedroom · 1 bed · 1 bath" line near the heading."""
    h1 = soup.find("h1")
    if h1 is None:
        return None
    for el in soup.find_all(["div", "span", "li", "ol"]):
        text = _el_text(el)
        if len(text) < 200 and OVERVIEW_TEXT_RE.search(text):
            return text
    text = _el_text(h1.find_next_sibling())
    if text and len(text) < 200:
        return text
    return None


def apply_dom_overview(soup: BeautifulSoup, record: ListingDetail) -> None:
    overview = dom_overview_text(soup)
    if not overview:
        return
    _set_once(record, "room_type", parse_room_type(overview))
    _set_once(record, "location", parse_location_hint(overview))
    apply_composition_text(record, overview)
    _set_once(record, "rating", parse_star_rating(overview))


def dom_house_rules(soup: BeautifulSoup) -> Optional[str]:
    policies = soup.select_one('div[data-section-id="POLICIES_DEFAULT"]')
    if policies is not None:
        for el in policies.find_all(["h3", "h2", "div"]):
            if _el_text(el) == "House rules":
                card = el.find_parent("div", class_=True)
                text = _el_text(card)
                if text:
                    return clean_text(re.sub(r"Show more|Hide", "", text, flags=re.I))
                break
        text = _el_text(policies)
        if len(text) > 20:
            return clean_text(re.sub(r"Show more|Hide", "", text, flags=re.I))

    for heading in soup.find_all(["h2", "h3"]):
        heading_text = _el_text(heading)
        if "House rules" in heading_text or "Things to know" in heading_text:
            container = heading.find_parent("section") or heading.parent
            text = _el_text(container)
            if len(text) > 20:
                return text
            break
    return None


def _host_container(soup: BeautifulSoup) -> Optional[Tag]:
    link = soup.select_one(HOST_PROFILE_SELECTOR)
    if link is not None:
        container = link.parent
        for _ in range(6):
            if container is None:
                break
            text = container.get_text(" ")
            if any(marker in text for marker in HOST_CARD_MARKERS) or container.name == "section":
                break
            container = container.parent
        return container

    for heading in soup.find_all(["h2", "h3", "h4", "div"]):
        if heading.name == "div" and heading.get("role") != "heading":
            continue
        if "Meet your host" in heading.get_text():
            parent = heading.parent
            return parent.parent if parent is not None and parent.parent is not None else parent
    return None


def apply_dom_host(soup: BeautifulSoup, host: Host) -> None:
    """Scan the host card around the profile link for name, tenure and badge."""
    link = soup.select_one(HOST_PROFILE_SELECTOR)
    if link is not None:
        m = HOST_PROFILE_ID_RE.search(link.get("href") or "")
        if m and host.id is None:
            host.id = m.group(1)
            host.profile_url = f"{BASE_URL}/users/show/{host.id}"

    container = _host_container(soup)
    if container is None:
        return
    text = container.get_text("\n")
    parsed = parse_host_text(text)

    _set_once(host, "name", parsed.name)
    if host.name is None:
        img = container.find("img")
        alt = (img.get("alt") or "").split(" ")[0] if img is not None else ""
        if alt and alt not in ("User", "Profile"):
            host.name = alt
    _set_once(host, "years_hosting", parsed.years_hosting)

    if host.is_superhost is None:
        host.is_superhost = bool(parsed.is_superhost)
    if host.host_type is None:
        host.host_type = "Superhost" if host.is_superhost else "Host"
