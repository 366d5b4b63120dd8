"""
Rental listing scraper with price-sharded crawling.
"""
from .models import (
    Amenity,
    Coordinates,
    CrawlTask,
    Host,
    ListingDetail,
    ListingSummary,
    Price,
    SearchPageResult,
    ShardTask,
)
from .config import CrawlInput, CrawlOptions, resolve_options
from .core import build_start_tasks, run_crawl
from .detail import extract_listing_details
from .errors import BlockedError, MeteringError, ScraperError
from .export import DatasetSink, LocalArtifactStore, save_output_rows
from .metering import CountingMeter, Meter, NoopMeter
from .orchestrator import CrawlOrchestrator
from .search import extract_search_page
from .sharding import bisect_shard, classify_price, generate_price_shards
from .state import CrawlState
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "Amenity",
    "Coordinates",
    "CrawlTask",
    "Host",
    "ListingDetail",
    "ListingSummary",
    "Price",
    "SearchPageResult",
    "ShardTask",
    "CrawlInput",
    "CrawlOptions",
    "resolve_options",
    "build_start_tasks",
    "run_crawl",
    "extract_listing_details",
    "extract_search_page",
    "BlockedError",
    "MeteringError",
    "ScraperError",
    "DatasetSink",
    "LocalArtifactStore",
    "save_output_rows",
    "CountingMeter",
    "Meter",
    "NoopMeter",
    "CrawlOrchestrator",
    "bisect_shard",
    "classify_price",
    "generate_price_shards",
    "CrawlState",
    "init_logger",
    "now_iso",
]
