"""
Utility functions for logging, timestamps and text cleanup.
"""
import asyncio
import functools
import logging
import re
from datetime import datetime, timezone
from typing import Any, Callable, Optional


def init_logger(
    name: str = "stayscraper",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_file: Optional[str] = "stayscraper.log"
) -> logging.Logger:
    """Initialize logger with console and optional file handlers."""
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    if logger.handlers:
        return logger

    console_level_num = getattr(logging, console_level.upper(), logging.INFO)
    ch = logging.StreamHandler()
    ch.setLevel(console_level_num)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_file:  # Create file handler only if log_file is provided
        file_level_num = getattr(logging, file_level.upper(), logging.DEBUG)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(file_level_num)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    return logger


def now_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat()


def current_year() -> int:
    return datetime.now(timezone.utc).year


def clean_text(s: Optional[str]) -> str:
    """Clean and normalize text by removing extra whitespace."""
    if not s:
        return ""
    s = s.replace("\xa0", " ")
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def strip_tags(html: str) -> str:
    return clean_text(re.sub(r"<[^>]*>", " ", html))


def to_float(value: Any) -> Optional[float]:
    """Safely convert a number or numeric text to float."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    m = re.search(r"-?\d+(?:\.\d+)?", str(value).replace(",", ""))
    if not m:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None


def to_int(value: Any) -> Optional[int]:
    """Safely convert a number or numeric text to int."""
    f = to_float(value)
    if f is None:
        return None
    return int(f)


def to_count(value: Any) -> Optional[float]:
    """Like to_float, but keeps whole numbers as int (3 rather than 3.0)."""
    f = to_float(value)
    if f is None:
        return None
    return int(f) if f.is_integer() else f


async def run_in_thread(func: Callable, *args, **kwargs) -> Any:
    """Run a blocking call (HTML parsing, extraction) in the default thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
