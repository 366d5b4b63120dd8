"""
Command line entry point.
"""
import argparse
import asyncio
import os
import sys

from .config import CrawlInput, fetch_exchange_rate, resolve_options
from .core import DEFAULT_MAX_CONCURRENCY, run_crawl
from .errors import MeteringError
from .export import DatasetSink, LocalArtifactStore, save_output_rows
from .metering import CountingMeter
from .utils import init_logger, now_iso


def _env_int(name: str):
    value = os.getenv(name, "").strip()
    return int(value) if value else None


def parse_args(argv=None):
    ap = argparse.ArgumentParser(description="Rental listing scraper with price sharding")
    ap.add_argument("--location", dest="locations", action="append", default=None,
                    help="Location query, e.g. 'London'. Repeatable.")
    ap.add_argument("--start-url", dest="start_urls", action="append", default=[],
                    help="Search or /rooms/<id> URL to start from. Repeatable.")
    ap.add_argument("--max-listings", type=int, default=_env_int("MAX_LISTINGS") or 0,
                    help="Maximum listings to collect (0 = unlimited)")
    ap.add_argument("--deep", action="store_true", help="Visit every listing page (detailed mode)")
    ap.add_argument("--currency", default=os.getenv("STAYSCRAPER_CURRENCY", "USD"), help="Price currency code")
    ap.add_argument("--check-in", default=None, help="Check-in date, YYYY-MM-DD")
    ap.add_argument("--check-out", default=None, help="Check-out date, YYYY-MM-DD")
    ap.add_argument("--min-price", type=int, default=None, help="Minimum nightly price")
    ap.add_argument("--max-price", type=int, default=None, help="Maximum nightly price")
    ap.add_argument("--adults", type=int, default=None)
    ap.add_argument("--children", type=int, default=None)
    ap.add_argument("--infants", type=int, default=None)
    ap.add_argument("--pets", type=int, default=None)
    ap.add_argument("--min-beds", type=int, default=None)
    ap.add_argument("--min-bedrooms", type=int, default=None)
    ap.add_argument("--min-bathrooms", type=int, default=None)
    # Add-ons
    ap.add_argument("--add-on-images", action="store_true", help="Collect all listing photos")
    ap.add_argument("--add-on-reviews", action="store_true", help="Collect reviews")
    ap.add_argument("--add-on-details", action="store_true", help="Collect description, house rules and amenities")
    ap.add_argument("--add-on-host-details", action="store_true", help="Collect host profile")
    # Sharding
    ap.add_argument("--price-step", type=int, default=None,
                    help="Width of each price shard (default: 5 USD converted to the currency)")
    scaling = ap.add_mutually_exclusive_group()
    scaling.add_argument("--horizontal-scaling", dest="horizontal_scaling", action="store_true", default=None,
                         help="Split the price range into shards")
    scaling.add_argument("--no-horizontal-scaling", dest="horizontal_scaling", action="store_false",
                         help="Never shard by price")
    # Runtime
    ap.add_argument("--headless", action="store_true", help="Run without UI")
    ap.add_argument("--max-concurrency", type=int, default=DEFAULT_MAX_CONCURRENCY, help="Parallel browser sessions")
    ap.add_argument("--credit-limit", type=int, default=_env_int("CREDIT_LIMIT"),
                    help="Stop the run once this many billable events were charged")
    ap.add_argument("--out", type=str, default="listings.csv", help="CSV/XLSX/JSON file to export")
    ap.add_argument("--jsonl", type=str, default=None, help="Also append each record to this JSON-lines file")
    ap.add_argument("--artifacts-dir", type=str, default=os.getenv("ARTIFACTS_DIR", "artifacts"),
                    help="Directory for diagnostic page dumps")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE", "DEBUG"),
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE_PATH", "stayscraper.log"),
                    help="Path to log file (default from env LOG_FILE_PATH or stayscraper.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")
    return ap.parse_args(argv)


def input_from_args(args) -> CrawlInput:
    locations = args.locations
    if locations is None:
        locations = [] if args.start_urls else ["London"]
    return CrawlInput(
        location_queries=locations,
        start_urls=args.start_urls,
        max_listings=args.max_listings,
        simple_mode=not args.deep,
        min_price=args.min_price,
        max_price=args.max_price,
        check_in=args.check_in,
        check_out=args.check_out,
        currency=args.currency.upper(),
        add_on_reviews=args.add_on_reviews,
        add_on_images=args.add_on_images,
        add_on_details=args.add_on_details,
        add_on_host_details=args.add_on_host_details,
        adults=args.adults,
        children=args.children,
        infants=args.infants,
        pets=args.pets,
        min_beds=args.min_beds,
        min_bedrooms=args.min_bedrooms,
        min_bathrooms=args.min_bathrooms,
        price_sharding_step=args.price_step,
        enable_horizontal_scaling=args.horizontal_scaling,
    )


def main(argv=None):
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    logger = init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )
    logger.info(
        f"Logger initialized: console={eff_console}, "
        f"file={'DISABLED' if args.no_file_log else eff_file}, "
        f"path={'N/A' if args.no_file_log else args.log_file_path}"
    )
    logger.info(f">>> Run started at {now_iso()}")

    crawl_input = input_from_args(args)
    rate = fetch_exchange_rate(crawl_input.currency)
    options = resolve_options(crawl_input, exchange_rate=rate)

    sink = DatasetSink(jsonl_path=args.jsonl)
    meter = CountingMeter(credit_limit=args.credit_limit)
    exit_code = 0
    try:
        asyncio.run(run_crawl(
            options,
            meter=meter,
            sink=sink,
            artifacts=LocalArtifactStore(args.artifacts_dir),
            headless=args.headless,
            max_concurrency=args.max_concurrency,
        ))
    except MeteringError as e:
        logger.error(f">>> Run aborted: {e}")
        exit_code = 1

    logger.info(f">>> Billable events: {meter.summary()}")
    save_output_rows(sink.records, args.out)
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
