"""
Data models for rental listing extraction and crawl scheduling.
"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional


def is_empty(value: Any) -> bool:
    """True for None, blank strings, empty containers and amount-less prices."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    if isinstance(value, Price):
        return not value.amount
    return False


@dataclass
class Price:
    """A nightly price. ``amount`` is "" when no number could be read."""

    amount: str = ""
    currency: Optional[str] = None
    label: str = ""

    def as_float(self) -> Optional[float]:
        if not self.amount:
            return None
        try:
            return float(self.amount)
        except ValueError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency, "label": self.label}


@dataclass
class Amenity:
    title: str
    available: bool = True


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Host:
    id: Optional[str] = None
    name: Optional[str] = None
    is_superhost: Optional[bool] = None
    years_hosting: Optional[int] = None
    thumbnail: Optional[str] = None
    profile_url: Optional[str] = None
    host_type: Optional[str] = None

    def has_data(self) -> bool:
        return any(getattr(self, f.name) is not None for f in fields(self))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_superhost": self.is_superhost,
            "years_hosting": self.years_hosting,
            "thumbnail": self.thumbnail,
            "profile_url": self.profile_url,
            "host_type": self.host_type,
        }


@dataclass
class ListingSummary:
    """A listing as seen on a search results page. Every field may be unset."""

    id: Optional[str] = None
    title: Optional[str] = None
    price: Optional[Price] = None
    rating: Optional[float] = None
    reviews_count: Optional[int] = None
    room_type: Optional[str] = None
    thumbnail: Optional[str] = None
    beds: Optional[int] = None
    bedrooms: Optional[int] = None
    bathrooms: Optional[float] = None
    person_capacity: Optional[int] = None
    location: Optional[str] = None
    url: Optional[str] = None


@dataclass
class ListingDetail(ListingSummary):
    """Full listing record extracted from a detail page."""

    description: Optional[str] = None
    sub_description: Optional[str] = None
    house_rules: Optional[str] = None
    images: List[str] = field(default_factory=list)
    amenities: List[Amenity] = field(default_factory=list)
    host: Optional[Host] = None
    coordinates: Optional[Coordinates] = None
    locale: Optional[str] = None
    currency: Optional[str] = None
    reviews: List[Dict[str, Any]] = field(default_factory=list)

    def merged_over(self, summary: Optional[ListingSummary]) -> "ListingDetail":
        """
        Fill every empty field from the carried-over search summary.

        A detail value wins whenever it is present and non-empty.
        """
        if summary is None:
            return self
        for f in fields(ListingSummary):
            if is_empty(getattr(self, f.name)):
                carried = getattr(summary, f.name)
                if not is_empty(carried):
                    setattr(self, f.name, carried)
        return self


@dataclass
class SearchPageResult:
    listings: List[ListingSummary] = field(default_factory=list)
    total_count: int = 0
    duplicate_count: int = 0


@dataclass
class ShardTask:
    """One price sub-range of a search, processed as its own task."""

    min_price: Optional[int] = None
    max_price: Optional[int] = None
    split_depth: int = 0
    cursor: Optional[str] = None

    @property
    def width(self) -> Optional[int]:
        if self.min_price is None or self.max_price is None:
            return None
        return self.max_price - self.min_price


LABEL_SEARCH = "SEARCH"
LABEL_DETAIL = "DETAIL"

# Lower runs first: detail pages drain before more search pages are opened.
PRIORITY_DETAIL = 0
PRIORITY_SEARCH = 1


@dataclass
class CrawlTask:
    """
    A unit of work in the crawl queue.

    ``payload`` carries routing data: ``shard`` (ShardTask) for SEARCH tasks,
    ``summary`` (ListingSummary) for DETAIL tasks.
    """

    url: str
    label: str = LABEL_SEARCH
    payload: Dict[str, Any] = field(default_factory=dict)
    priority: int = PRIORITY_SEARCH
    unique_key: Optional[str] = None
    retries: int = 0

    @property
    def key(self) -> str:
        return self.unique_key or self.url
