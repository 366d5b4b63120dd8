"""
Exception types raised across the crawl.

Extraction misses are never exceptions: they surface as unset fields.
"""


class ScraperError(Exception):
    """Base class for crawl errors."""


class BlockedError(ScraperError):
    """The page was served an anti-bot wall; the session must be rotated."""

    def __init__(self, url: str, marker: str):
        super().__init__(f"Blocked at {url} (matched {marker!r})")
        self.url = url
        self.marker = marker


class MeteringError(ScraperError):
    """A billing event could not be charged. Fatal for the whole run."""

    def __init__(self, event_name: str, message: str):
        super().__init__(message)
        self.event_name = event_name
