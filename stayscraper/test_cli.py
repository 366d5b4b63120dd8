#!/usr/bin/env python3
"""
Tests for command line parsing and the main entry point.
"""
import pandas as pd
import pytest

import stayscraper.cli as cli
from stayscraper.cli import input_from_args, parse_args
from stayscraper.errors import MeteringError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("MAX_LISTINGS", "STAYSCRAPER_CURRENCY", "CREDIT_LIMIT", "ARTIFACTS_DIR"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    args = parse_args([])
    crawl_input = input_from_args(args)
    assert crawl_input.location_queries == ["London"]
    assert crawl_input.max_listings == 0
    assert crawl_input.simple_mode is True
    assert crawl_input.currency == "USD"
    assert crawl_input.enable_horizontal_scaling is None
    assert args.out == "listings.csv"


def test_full_command_line():
    args = parse_args([
        "--location", "Paris", "--location", "Rome",
        "--max-listings", "20", "--deep", "--currency", "eur",
        "--min-price", "50", "--max-price", "300", "--price-step", "25",
        "--adults", "2", "--min-bedrooms", "1",
        "--add-on-images", "--add-on-host-details",
        "--no-horizontal-scaling",
    ])
    crawl_input = input_from_args(args)
    assert crawl_input.location_queries == ["Paris", "Rome"]
    assert crawl_input.max_listings == 20
    assert crawl_input.simple_mode is False
    assert crawl_input.currency == "EUR"
    assert (crawl_input.min_price, crawl_input.max_price) == (50, 300)
    assert crawl_input.price_sharding_step == 25
    assert crawl_input.adults == 2
    assert crawl_input.min_bedrooms == 1
    assert crawl_input.add_on_images and crawl_input.add_on_host_details
    assert not crawl_input.add_on_reviews
    assert crawl_input.enable_horizontal_scaling is False


def test_start_urls_replace_default_location():
    args = parse_args(["--start-url", "https://www.airbnb.com/rooms/1", "--horizontal-scaling"])
    crawl_input = input_from_args(args)
    assert crawl_input.location_queries == []
    assert crawl_input.start_urls == ["https://www.airbnb.com/rooms/1"]
    assert crawl_input.enable_horizontal_scaling is True


def test_env_defaults(monkeypatch):
    monkeypatch.setenv("MAX_LISTINGS", "15")
    monkeypatch.setenv("STAYSCRAPER_CURRENCY", "gbp")
    crawl_input = input_from_args(parse_args([]))
    assert crawl_input.max_listings == 15
    assert crawl_input.currency == "GBP"


def _patch_run(monkeypatch, error=None):
    async def fake_run_crawl(options, meter=None, sink=None, **kwargs):
        sink.push({"listing_id": "1", "url": "https://www.airbnb.com/rooms/1"})
        await meter.charge("listing-scraped")
        if error is not None:
            raise error
        return sink

    monkeypatch.setattr(cli, "run_crawl", fake_run_crawl)
    monkeypatch.setattr(cli, "fetch_exchange_rate", lambda currency: 1.0)


def test_main_exports_rows(monkeypatch, tmp_path):
    _patch_run(monkeypatch)
    out = tmp_path / "out.csv"
    cli.main(["--max-listings", "1", "--out", str(out), "--no-file-log", "--artifacts-dir", str(tmp_path)])
    assert list(pd.read_csv(out, dtype=str)["listing_id"]) == ["1"]


def test_main_exits_on_metering_error(monkeypatch, tmp_path):
    _patch_run(monkeypatch, error=MeteringError("listing-scraped", "Credit charge failed"))
    out = tmp_path / "out.csv"
    with pytest.raises(SystemExit) as exc_info:
        cli.main(["--out", str(out), "--no-file-log", "--artifacts-dir", str(tmp_path)])
    assert exc_info.value.code == 1
    # What was collected before the abort is still exported.
    assert out.exists()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
