#!/usr/bin/env python3
"""
Tests for the text parsers (prices, room composition, ids, host cards, titles).
"""
import base64

import pytest

from stayscraper.parsers import (
    clean_price_label,
    decode_opaque_id,
    find_block_marker,
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


def test_price_plain_and_per_night():
    """A bare amount and an explicit nightly label are both nightly."""
    price = parse_price("$150")
    assert price.amount == "150"
    assert price.currency == "USD"

    price = parse_price("$150 / night")
    assert price.amount == "150"


def test_price_total_is_divided_by_nights():
    price = parse_price("$900 total for 6 nights")
    assert price.amount == "150"
    assert price.currency == "USD"
    assert price.label == "$900 total for 6 nights"


def test_price_qualifier_and_explicit_nights():
    assert parse_price("$600", qualifier="for 4 nights").amount == "150"
    assert parse_price("$300 total", nights=2).amount == "150"
    # A "per night" label is never divided, whatever the caller says.
    assert parse_price("$120 per night", nights=3).amount == "120"


def test_price_rounding_is_half_up():
    assert parse_price("$250 total for 4 nights").amount == "63"
    assert parse_price("$100 total for 3 nights").amount == "33"
    assert parse_price("€1,234.50").amount == "1235"
    assert parse_price("€1,234.50").currency == "EUR"


def test_price_currency_sources():
    assert parse_price("1,200 THB").currency == "THB"
    assert parse_price("1,200 THB").amount == "1200"
    assert parse_price("£80").currency == "GBP"
    # A currency known from the page wins over the symbol.
    assert parse_price("$100", currency="CAD").currency == "CAD"


def test_price_without_number():
    price = parse_price("")
    assert price.amount == ""
    assert price.as_float() is None

    price = parse_price("Price unavailable")
    assert price.amount == ""
    assert price.label == "Price unavailable"


def test_price_boilerplate_removed():
    assert clean_price_label("$120 Show price breakdown") == "$120"
    assert clean_price_label(None) == ""


def test_room_composition():
    comp = parse_room_composition("2 guests · 1 bedroom · 3 beds · 1.5 baths")
    assert comp.guests == 2
    assert comp.bedrooms == 1
    assert comp.beds == 3
    assert comp.bathrooms == 1.5


def test_room_composition_special_cases():
    comp = parse_room_composition("Studio · 1 bed · 1 bath")
    assert comp.bedrooms == 0
    assert comp.beds == 1
    assert comp.bathrooms == 1
    assert isinstance(comp.bathrooms, int)

    assert parse_room_composition("Half-bath").bathrooms == 0.5
    assert parse_room_composition("1 shared bath").bathrooms == 1

    empty = parse_room_composition(None)
    assert empty.guests is None and empty.beds is None


def test_location_type_and_rating_hints():
    assert parse_location_hint("Entire condo in Rome · 2 bedrooms") == "Rome"
    assert parse_location_hint("2 bedrooms") is None
    assert parse_room_type("Private room in London") == "Private room"
    assert parse_room_type("Entire rental unit in Paris") == "Entire rental unit"
    assert parse_room_type("Entire serviced apartment near Lisbon") == "Entire serviced apartment"
    assert parse_room_type("Entire home · 2 bedrooms") == "Entire home"
    assert parse_room_type("Lovely flat") is None
    assert parse_star_rating("★4.87 (120)") == 4.87
    assert parse_star_rating("New") is None


def test_decode_opaque_id():
    assert decode_opaque_id("12345") == "12345"
    assert decode_opaque_id(12345) == "12345"

    token = base64.b64encode(b"StayListing:987654").decode()
    assert decode_opaque_id(token, kind="Listing") == "987654"
    # Missing padding is tolerated.
    assert decode_opaque_id(token.rstrip("="), kind="Listing") == "987654"

    user = base64.b64encode(b"DemandUser:42").decode()
    assert decode_opaque_id(user) == "42"


def test_decode_opaque_id_fallbacks():
    assert decode_opaque_id(None) is None
    assert decode_opaque_id(True) is None
    assert decode_opaque_id("   ") is None
    assert decode_opaque_id("abc!") == "abc!"


def test_host_text_hosted_by():
    host = parse_host_text("Hosted by Maria\nJoined in May 2015", year=2025)
    assert host.name == "Maria"
    assert host.years_hosting == 10
    assert host.is_superhost is False


def test_host_text_card():
    host = parse_host_text("Maria\nSuperhost\n8 years hosting")
    assert host.name == "Maria"
    assert host.years_hosting == 8
    assert host.is_superhost is True

    assert parse_host_text("Hosting for 6 years").years_hosting == 6
    assert parse_host_text(None).name is None


def test_host_text_meet_your_host_card():
    """The card heading is not mistaken for the host name."""
    host = parse_host_text("Meet your host\nMaria\nSuperhost\n8 years hosting")
    assert host.name == "Maria"
    assert host.is_superhost is True

    assert parse_host_text("Meet your host\n\nJon\n\nHost\n").name == "Jon"
    assert parse_host_text("Anna · Superhost").name == "Anna"
    assert parse_host_text("Meet your host\nSuperhost\nHost details").name is None


@pytest.mark.parametrize("title,generic", [
    ("Room in London", True),
    ("Entire home in Paris", True),
    ("Home near Lisbon", True),
    ("Entire rental unit in London", True),
    ("Entire serviced apartment in Paris", True),
    ("Private room in bed-and-breakfast in Rome", False),
    ("Stylish loft near Tower Bridge", False),
    ("Room in London with a view of the river Thames and Tower", False),
])
def test_generic_titles(title, generic):
    assert is_generic_title(title) is generic


def test_placeholder_and_page_titles():
    assert is_placeholder_title("Airbnb")
    assert is_placeholder_title("Airbnb: Vacation Rentals, Cabins, Beach Houses")
    assert is_placeholder_title("Holiday Rentals & Places to Stay")
    assert not is_placeholder_title("Cozy Loft")

    assert title_from_document_title("Cozy Loft - Condos for Rent in Paris - Airbnb") == "Cozy Loft"
    assert title_from_document_title("Cozy Loft") is None
    assert title_from_og_title("Cozy Loft · ★4.9 · 1 bedroom") == "Cozy Loft"
    assert title_from_og_title("Hi") is None


def test_block_markers():
    assert find_block_marker("<html><h1>Access Denied</h1></html>") == "Access Denied"
    assert find_block_marker("<p>Press and hold the button</p>") == "Press and hold"
    assert find_block_marker("<html>listings</html>") is None
    assert find_block_marker(None) is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
