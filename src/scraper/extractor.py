"""
Price Tracker - Extraction Orchestrator

Sequences one product extraction:
1. Open a fresh page from the shared browser session
2. Navigate to the product page (DOM content loaded is enough)
3. Settle delay for client-side rendered price/title widgets
4. Title chain      -> miss: BlockedError or ExtractionError("title")
5. Price chain      -> unavailable page short-circuits to available=False
6. Category chain   -> best effort, failures are logged and swallowed
7. Close the page, always

Failed attempts are retried with a fixed delay. Block walls are not retried
unless RETRY_ON_BLOCK is enabled, and then with a much longer delay.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, NamedTuple

import structlog
from playwright.async_api import Error as PlaywrightError

from src.config import settings
from src.scraper import ScrapedProductData
from src.scraper.errors import (
    BlockedError,
    ExtractionError,
    NavigationError,
    ScraperError,
    SessionError,
)
from src.scraper.page_state import classify_page, detect_unavailability
from src.scraper.price_parser import parse_price
from src.scraper.selectors import FieldKind, resolve_field
from src.scraper.session import BrowserSession
from src.utils.asin import build_product_url, normalize_asin

logger = structlog.get_logger(__name__)


class _PriceResult(NamedTuple):
    price: Decimal | None
    available: bool
    unavailable_reason: str | None = None
    method: str | None = None


class ProductExtractor:
    """
    Extracts ScrapedProductData for one ASIN at a time.

    The browser session is injected so its lifecycle stays with the owner.

    Usage:
        extractor = ProductExtractor(BrowserSession())
        data = await extractor.extract_product("B08N5WRWNW")
        await extractor.close()
    """

    def __init__(
        self,
        session: BrowserSession | None = None,
        base_url: str | None = None,
        navigation_timeout_ms: int | None = None,
        settle_delay: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        retry_on_block: bool | None = None,
        blocked_retry_delay: float | None = None,
    ) -> None:
        self.session = session or BrowserSession()
        self.base_url = base_url or settings.MARKETPLACE_BASE_URL
        self.navigation_timeout_ms = navigation_timeout_ms or settings.NAVIGATION_TIMEOUT_MS
        self.settle_delay = settings.SETTLE_DELAY_SECONDS if settle_delay is None else settle_delay
        self.max_retries = settings.MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self.retry_on_block = settings.RETRY_ON_BLOCK if retry_on_block is None else retry_on_block
        self.blocked_retry_delay = (
            settings.BLOCKED_RETRY_DELAY_SECONDS if blocked_retry_delay is None else blocked_retry_delay
        )

    async def extract_product(self, asin: str, max_retries: int | None = None) -> ScrapedProductData:
        """
        Extract title, price, availability and categories for `asin`.

        Args:
            asin: 10-character ASIN, any case.
            max_retries: Retries after the first attempt (default settings.MAX_RETRIES).

        Returns:
            Fully populated ScrapedProductData.

        Raises:
            ValueError: Malformed ASIN.
            SessionError: Browser could not be launched (never retried).
            BlockedError: Captcha wall detected.
            NavigationError, ExtractionError, PriceFormatError: after retries ran out.
        """
        asin = normalize_asin(asin)
        retries_left = self.max_retries if max_retries is None else max_retries
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self._attempt(asin, attempt)
            except SessionError:
                raise
            except BlockedError as e:
                if not self.retry_on_block or retries_left <= 0:
                    logger.error(
                        "extraction_blocked",
                        asin=asin,
                        attempt=attempt,
                        error=str(e),
                        source="extractor",
                    )
                    raise
                delay = self.blocked_retry_delay
                error: Exception = e
            except (ScraperError, PlaywrightError) as e:
                if retries_left <= 0:
                    logger.error(
                        "extraction_failed",
                        asin=asin,
                        attempt=attempt,
                        error=str(e),
                        error_type=type(e).__name__,
                        source="extractor",
                    )
                    raise
                delay = self.retry_delay
                error = e

            retries_left -= 1
            logger.warning(
                "extraction_retrying",
                asin=asin,
                attempt=attempt,
                retries_left=retries_left,
                delay_seconds=delay,
                error=str(error),
                error_type=type(error).__name__,
                source="extractor",
            )
            await asyncio.sleep(delay)

    async def _attempt(self, asin: str, attempt: int) -> ScrapedProductData:
        """One extraction attempt on its own page. The page is always closed."""
        page = await self.session.new_page()
        url = build_product_url(asin, self.base_url)

        try:
            logger.info("extraction_started", asin=asin, url=url, attempt=attempt, source="extractor")
            await self._navigate(page, url)
            await asyncio.sleep(self.settle_delay)

            title = await self._extract_title(page, asin)
            price = await self._extract_price(page, asin)
            categories = await self._extract_categories(page, asin)

            data = ScrapedProductData(
                asin=asin,
                title=title,
                price=price.price,
                available=price.available,
                unavailable_reason=price.unavailable_reason,
                categories=categories,
                price_method=price.method,
            )
        finally:
            await self._close_page(page, asin)

        logger.info(
            "extraction_success",
            asin=asin,
            title=data.title[:60],
            price=str(data.price) if data.price is not None else None,
            available=data.available,
            price_method=data.price_method,
            category_count=len(data.categories or []),
            source="extractor",
        )
        return data

    async def _navigate(self, page: Any, url: str) -> None:
        # The page keeps loading ads/trackers, so never wait for network idle.
        try:
            await page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(url, str(e)) from e

    async def _extract_title(self, page: Any, asin: str) -> str:
        outcome = await resolve_field(page, FieldKind.TITLE)
        if outcome.found:
            return outcome.value

        state = await classify_page(page)
        if state.is_blocked:
            raise BlockedError(asin)
        raise ExtractionError("title", asin)

    async def _extract_price(self, page: Any, asin: str) -> _PriceResult:
        reason = await detect_unavailability(page)
        if reason is not None:
            return _PriceResult(None, False, reason)

        outcome = await resolve_field(page, FieldKind.PRICE)
        if outcome.found:
            return _PriceResult(parse_price(outcome.value), True, None, outcome.strategy_id)

        # The title rendered, so this is a product page, not a captcha wall.
        state = await classify_page(page, check_block=False)
        if state.is_unavailable:
            return _PriceResult(None, False, state.reason)
        raise ExtractionError("price", asin)

    async def _extract_categories(self, page: Any, asin: str) -> list[str] | None:
        """Breadcrumb path, or None. Categories are optional metadata."""
        try:
            outcome = await resolve_field(page, FieldKind.CATEGORY)
        except Exception as e:
            logger.warning(
                "category_extraction_failed",
                asin=asin,
                error=str(e),
                source="extractor",
            )
            return None

        if not outcome.found:
            logger.info("categories_not_found", asin=asin, source="extractor")
            return None
        return list(outcome.value)

    async def _close_page(self, page: Any, asin: str) -> None:
        try:
            await page.close()
        except PlaywrightError as e:
            logger.warning("page_close_failed", asin=asin, error=str(e), source="extractor")

    async def close(self) -> None:
        """Tear down the browser session."""
        await self.session.shutdown()

    async def __aenter__(self) -> ProductExtractor:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
