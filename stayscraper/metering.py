"""
Per-event metering.

The orchestrator charges events at fixed decision points through a Meter.
Any charge failure is fatal: it surfaces as MeteringError and the run stops.
"""
import asyncio
import logging
from collections import Counter
from typing import Dict, Optional

from .errors import MeteringError

logger = logging.getLogger(__name__)

EVENT_LISTING = "listing-scraped"
EVENT_ADDON_DETAILS = "addon-details"
EVENT_ADDON_HOST_DETAILS = "addon-host-details"
EVENT_ADDON_IMAGES = "addon-images"
EVENT_ADDON_REVIEWS = "addon-reviews"

CREDIT_ERROR_WORDS = ("credit", "balance", "exhausted")


class CreditsExhausted(Exception):
    pass


class Meter:
    """Port to the billing service."""

    async def charge(self, event_name: str, count: int = 1) -> None:
        raise NotImplementedError


class NoopMeter(Meter):
    async def charge(self, event_name: str, count: int = 1) -> None:
        return None


class CountingMeter(Meter):
    """
    Tallies charged events in memory.

    With ``credit_limit`` set, a charge that would push the total number of
    events past the limit fails with CreditsExhausted.
    """

    def __init__(self, credit_limit: Optional[int] = None):
        self.credit_limit = credit_limit
        self.events: Counter = Counter()
        self._lock = asyncio.Lock()

    @property
    def total(self) -> int:
        return sum(self.events.values())

    async def charge(self, event_name: str, count: int = 1) -> None:
        async with self._lock:
            if self.credit_limit is not None and self.total + count > self.credit_limit:
                raise CreditsExhausted(
                    f"Credits exhausted: {self.total}/{self.credit_limit} used, {count} more requested"
                )
            self.events[event_name] += count

    def summary(self) -> Dict[str, int]:
        return dict(self.events)


async def charge_or_abort(meter: Meter, event_name: str, count: int = 1) -> None:
    """Charge ``count`` events or raise MeteringError to abort the run."""
    if count <= 0:
        return
    try:
        await meter.charge(event_name, count)
    except Exception as e:
        detail = str(e)
        if any(word in detail.lower() for word in CREDIT_ERROR_WORDS):
            message = f"User credits exhausted. Component: {event_name}. Top up the account to continue."
        else:
            message = (
                f"Credit charge failed for event: {event_name}. "
                f"Stop reason: Insufficient credits or API error. Detail: {detail}"
            )
        logger.critical("[CRITICAL] %s", message)
        raise MeteringError(event_name, message) from e
