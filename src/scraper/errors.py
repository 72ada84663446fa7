"""
Price Tracker - Extraction error kinds

Every failure the extraction core raises is a ScraperError subclass, so a
caller can catch the family or a single kind. Category extraction never
raises; it degrades to categories=None.
"""

from __future__ import annotations


class ScraperError(RuntimeError):
    """Base class for extraction failures."""


class SessionError(ScraperError):
    """Browser, context or page could not be created. Never retried."""


class NavigationError(ScraperError):
    """Product page failed to load within the navigation timeout."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to load {url}: {reason}")


class ExtractionError(ScraperError):
    """Every selector strategy for a required field missed."""

    def __init__(self, field: str, asin: str | None = None):
        self.field = field
        self.asin = asin
        super().__init__(f"{field} not found")


class BlockedError(ScraperError):
    """The page is a captcha / robot-check wall instead of a product page."""

    def __init__(self, asin: str):
        self.asin = asin
        super().__init__(f"Amazon is showing a captcha or blocking the request for {asin}")


class PriceFormatError(ScraperError):
    """A price fragment did not parse to a finite number."""

    def __init__(self, raw: str, reason: str = "invalid price format"):
        self.raw = raw
        self.reason = reason
        super().__init__(f"{reason}: {raw!r}")
