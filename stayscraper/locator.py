"""
Structured data locator: finds embedded JSON payloads in a rendered page and
walks them looking for record-shaped nodes.

The payload schema is undocumented and changes often, so nodes are matched by
shape (a ``__typename`` tag or the presence of fields) and fields are read
through prioritized lists of alternative paths. Nothing here mutates its
input or raises on odd data.
"""
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Union

from bs4 import BeautifulSoup

from .models import is_empty

logger = logging.getLogger(__name__)

SEARCH_SENTINELS = ("niobeClientData",)
DETAIL_SENTINELS = ("niobeClientData", "pageProps")
DEFAULT_MAX_DEPTH = 15


def make_soup(html: Union[str, BeautifulSoup]) -> BeautifulSoup:
    """Parse page HTML; an already parsed document is returned as is."""
    if isinstance(html, BeautifulSoup):
        return html
    return BeautifulSoup(html or "", "html.parser")


def iter_json_payloads(soup: BeautifulSoup, sentinels: Sequence[str]) -> Iterator[Any]:
    """
    Yield parsed ``script[type="application/json"]`` bodies carrying a sentinel.

    A script that fails to parse is skipped; the others are still returned.
    """
    for script in soup.find_all("script", attrs={"type": "application/json"}):
        text = script.string or script.get_text() or ""
        if not any(s in text for s in sentinels):
            continue
        try:
            yield json.loads(text)
        except ValueError:
            logger.debug("Skipping malformed JSON payload (%d chars)", len(text))


def load_script_json(soup: BeautifulSoup, element_id: str) -> Optional[Any]:
    """Parse the JSON body of ``<script id=...>``, None when absent or broken."""
    script = soup.find("script", id=element_id)
    if script is None:
        return None
    try:
        return json.loads(script.string or script.get_text() or "{}")
    except ValueError:
        logger.debug("Malformed JSON in #%s", element_id)
        return None


def walk(tree: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> Iterator[Dict[str, Any]]:
    """
    Depth-first pre-order walk yielding every dict node of a JSON value tree.

    Lists are traversed but not yielded. Nodes deeper than ``max_depth`` are
    never visited and a node reachable twice is only yielded once.
    """
    visited = set()
    stack = [(tree, 0)]
    while stack:
        node, depth = stack.pop()
        if depth > max_depth or not isinstance(node, (dict, list)):
            continue
        if id(node) in visited:
            continue
        visited.add(id(node))

        if isinstance(node, dict):
            yield node
            children = list(node.values())
        else:
            children = list(node)
        for child in reversed(children):
            if isinstance(child, (dict, list)):
                stack.append((child, depth + 1))


def find_first(
    tree: Any,
    extract: Callable[[Dict[str, Any]], Any],
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Any:
    """Return the first non-empty ``extract(node)`` in walk order."""
    for node in walk(tree, max_depth=max_depth):
        value = extract(node)
        if not is_empty(value):
            return value
    return None


def get_path(node: Any, path: str) -> Any:
    """Read a dotted path such as ``"listing.contextualPictures.0.picture"``."""
    current = node
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, list) and part.isdigit():
            idx = int(part)
            current = current[idx] if idx < len(current) else None
        else:
            return None
        if current is None:
            return None
    return current


def first_value(node: Any, paths: Iterable[str]) -> Any:
    """First non-empty value among alternative paths, or None."""
    for path in paths:
        value = get_path(node, path)
        if not is_empty(value):
            return value
    return None


@dataclass(frozen=True)
class FieldRule:
    """Alternative property paths for one field, with an optional coercion."""

    field: str
    paths: Sequence[str]
    coerce: Optional[Callable[[Any], Any]] = None

    def resolve(self, node: Any) -> Any:
        for path in self.paths:
            value = get_path(node, path)
            if is_empty(value):
                continue
            if self.coerce is not None:
                value = self.coerce(value)
                if is_empty(value):
                    continue
            return value
        return None


def resolve_fields(node: Any, rules: Iterable[FieldRule], target: Any) -> List[str]:
    """
    Fill unset attributes of ``target`` from ``node``.

    A field that already holds a value is never overwritten. Returns the
    names of the fields that were set.
    """
    filled = []
    for rule in rules:
        if not is_empty(getattr(target, rule.field, None)):
            continue
        value = rule.resolve(node)
        if value is not None:
            setattr(target, rule.field, value)
            filled.append(rule.field)
    return filled


def typename(node: Dict[str, Any]) -> str:
    value = node.get("__typename")
    return value if isinstance(value, str) else ""


def is_listing_node(node: Dict[str, Any]) -> bool:
    """Search result cards carry a listing-ish ``__typename``."""
    name = typename(node)
    return name == "StaySearchResult" or "Listing" in name or "SearchResult" in name
