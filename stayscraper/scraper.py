"""
Playwright page interaction for search and listing pages.

Extraction works on the HTML returned by ``page.content()``; the helpers
here only bring a page into a state worth reading.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Union

from bs4 import BeautifulSoup
from playwright.async_api import Error as PlaywrightError

from .locator import make_soup
from .urls import absolute_url

logger = logging.getLogger(__name__)

# Selectors
LISTING_ANCHOR_SEL = 'a[href^="/rooms/"]'
PAGINATION_NAV_SEL = 'nav[aria-label="Search results pagination"]'
NEXT_LINK_SEL = 'a[aria-label="Next"]'
NEXT_BUTTON_SEL = 'button[aria-label="Next"]'
SHOW_MORE_SEL = "button >> text=/Show more|Read more/"

# Timeouts (ms)
LISTINGS_TIMEOUT_MS = 30_000
TITLE_TIMEOUT_MS = 10_000
NETWORK_IDLE_TIMEOUT_MS = 8_000
NEXT_CLICK_IDLE_TIMEOUT_MS = 10_000
PAGINATION_TIMEOUT_MS = 5_000
SHOW_MORE_TIMEOUT_MS = 2_000

# Pauses (s)
SETTLE_PAUSE = 0.3
SCROLL_PAUSE = 0.5
HOST_RENDER_PAUSE = 1.0

SCROLL_FRACTIONS = (0.25, 0.5, 0.75, 1.0)

# True once the h1 carries a listing title rather than a loading or site name.
MEANINGFUL_H1_JS = """() => {
    const text = document.querySelector('h1')?.textContent?.trim();
    return !!text && text.length > 5 && !text.startsWith('Airbnb');
}"""


async def wait_for_listings(page, timeout_ms: int = LISTINGS_TIMEOUT_MS) -> bool:
    """Wait for listing anchors on a search page; False on timeout."""
    try:
        await page.wait_for_selector(LISTING_ANCHOR_SEL, timeout=timeout_ms)
        return True
    except PlaywrightError:
        return False


async def scroll_to_bottom(page, pause: Optional[float] = None) -> None:
    await page.evaluate("() => window.scrollTo(0, document.body.scrollHeight)")
    await asyncio.sleep(SETTLE_PAUSE if pause is None else pause)


async def prepare_detail_page(page) -> None:
    """
    Bring a listing page to a fully rendered state.

    Waits for a real title, expands the collapsed description, then scrolls
    through the page in steps so lazily rendered sections (the host card sits
    at the very bottom) are mounted before the HTML is read. Each step is
    best-effort.
    """
    try:
        await page.wait_for_function(MEANINGFUL_H1_JS, timeout=TITLE_TIMEOUT_MS)
    except PlaywrightError:
        logger.debug("Listing title did not render in time: %s", page.url)

    try:
        await page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_TIMEOUT_MS)
    except PlaywrightError:
        pass

    try:
        await page.click(SHOW_MORE_SEL, timeout=SHOW_MORE_TIMEOUT_MS)
        await asyncio.sleep(SCROLL_PAUSE)
    except PlaywrightError:
        pass

    for fraction in SCROLL_FRACTIONS:
        await page.evaluate("f => window.scrollTo(0, document.body.scrollHeight * f)", fraction)
        await asyncio.sleep(SCROLL_PAUSE)

    await asyncio.sleep(HOST_RENDER_PAUSE)
    await page.evaluate("() => window.scrollTo(0, 0)")
    await asyncio.sleep(SCROLL_PAUSE)


async def prepare_pagination(page) -> None:
    """Scroll to the bottom twice and give the pagination bar time to mount."""
    await scroll_to_bottom(page, pause=SCROLL_PAUSE)
    await scroll_to_bottom(page, pause=0)
    try:
        await page.wait_for_selector(PAGINATION_NAV_SEL, timeout=PAGINATION_TIMEOUT_MS)
    except PlaywrightError:
        logger.debug("No pagination bar on %s", page.url)
    await asyncio.sleep(SETTLE_PAUSE)


@dataclass
class NextPage:
    found: bool = False
    href: Optional[str] = None
    disabled: bool = False
    needs_click: bool = False
    reason: str = ""


def _is_disabled(el) -> bool:
    return el.has_attr("disabled") or el.get("aria-disabled") == "true"


def find_next_page(html: Union[str, BeautifulSoup]) -> NextPage:
    """Locate the "Next" control of a search results page."""
    soup = make_soup(html)

    link = soup.select_one(NEXT_LINK_SEL)
    if link is not None:
        href = link.get("href")
        return NextPage(
            found=True,
            href=absolute_url(href) if href else None,
            disabled=_is_disabled(link),
        )

    button = soup.select_one(NEXT_BUTTON_SEL)
    if button is not None:
        return NextPage(found=True, disabled=_is_disabled(button), needs_click=True)

    if soup.select_one(PAGINATION_NAV_SEL) is not None:
        return NextPage(reason="Nav found but no Next button")
    return NextPage(reason="No pagination nav found")


async def click_next(page) -> Optional[str]:
    """Click a script-driven Next button; returns the URL it led to."""
    try:
        await page.click(NEXT_BUTTON_SEL)
        await page.wait_for_load_state("networkidle", timeout=NEXT_CLICK_IDLE_TIMEOUT_MS)
    except PlaywrightError as e:
        logger.warning("[SEARCH] Next button click failed: %s", e)
        return None
    return page.url


async def save_debug_snapshot(page, artifacts, key: str, full_page: bool = False) -> None:
    """Store the page HTML and a screenshot for post-mortem inspection."""
    if artifacts is None:
        return
    try:
        html = await page.content()
        artifacts.save(f"{key}.html", html, "text/html")
        png = await page.screenshot(full_page=full_page)
        artifacts.save(key, png, "image/png")
    except (PlaywrightError, OSError) as e:
        logger.warning("Could not save debug snapshot %s: %s", key, e)
