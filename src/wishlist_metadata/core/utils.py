from __future__ import annotations

import asyncio
import hashlib
import random
import re
from datetime import datetime, timezone
from urllib.parse import unquote, urlsplit


_FILE_SUFFIX = re.compile(r"\.(?:html?|php|aspx?)$", re.IGNORECASE)
_WORD_START = re.compile(r"\b\w")
_NON_PRICE_CHARS = re.compile(r"[^0-9.]")
_LEADING_NUMBER = re.compile(r"\d*\.?\d+")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def sha256_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


async def async_backoff_sleep(attempt: int, base_seconds: float) -> None:
    delay = base_seconds * (2 ** max(0, attempt - 1))
    delay *= random.uniform(0.85, 1.15)
    await asyncio.sleep(min(delay, 30.0))


def parse_price(raw: str | None) -> float | None:
    """Numeric value of a scraped price string, or None.

    Everything but digits and dots is discarded first, then the leading number
    is read: "$1,299.00" gives 1299.0, "12.50 incl. VAT." gives 12.5 and
    "call for price" gives None.
    """

    if raw is None:
        return None
    cleaned = _NON_PRICE_CHARS.sub("", str(raw))
    if not cleaned:
        return None
    m = _LEADING_NUMBER.match(cleaned)
    if m is None:
        return None
    return float(m.group(0))


def parse_int(raw: str | None) -> int | None:
    if raw is None:
        return None
    m = re.match(r"\s*(\d+)", str(raw))
    return int(m.group(1)) if m else None


def title_from_url_path(url: str) -> str | None:
    try:
        path = urlsplit(url).path or ""
    except ValueError:
        return None
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    cleaned = unquote(segments[-1])
    cleaned = re.sub(r"[-_]", " ", cleaned)
    cleaned = _FILE_SUFFIX.sub("", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned:
        return None
    return _WORD_START.sub(lambda m: m.group(0).upper(), cleaned)
