"""
Price Tracker - ASIN validation and product URLs

An ASIN (Amazon Standard Identification Number) is exactly 10 characters,
letters and digits only, case-insensitive. The canonical form is uppercase.
"""

from __future__ import annotations

import re

from src.config import settings

_ASIN_PATTERN = re.compile(r"^[A-Z0-9]{10}$", re.IGNORECASE)


def validate_asin(asin: str | None) -> bool:
    """Return True when `asin` (after trimming) is a well-formed ASIN."""
    if not asin:
        return False
    return bool(_ASIN_PATTERN.match(asin.strip()))


def normalize_asin(asin: str) -> str:
    """Trim and uppercase an ASIN. Raises ValueError when malformed."""
    if not validate_asin(asin):
        raise ValueError(f"Invalid ASIN: {asin!r} (expected 10 letters/digits)")
    return asin.strip().upper()


def build_product_url(asin: str, base_url: str | None = None) -> str:
    """Canonical product page URL, e.g. https://www.amazon.com.br/dp/B08N5WRWNW."""
    base = (base_url or settings.MARKETPLACE_BASE_URL).rstrip("/")
    return f"{base}/dp/{normalize_asin(asin)}"
