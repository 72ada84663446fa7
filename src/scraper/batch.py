"""
Price Tracker - Batch Throttler

Runs extractions for many ASINs one after another, with a fixed delay
between items to stay under Amazon's rate limiting. A single-flight flag
rejects overlapping runs so two batches never drive the shared browser
context at the same time. One product's failure never aborts the batch.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable

import structlog
from pydantic import BaseModel, Field

from src.config import settings
from src.scraper import ScrapedProductData
from src.scraper.extractor import ProductExtractor

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[int, int, str], None]
ResultCallback = Callable[[ScrapedProductData], Awaitable[bool]]


class BatchResult(BaseModel):
    """Tally of one batch run."""
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    already_running: bool = False
    failures: dict[str, str] = Field(default_factory=dict)

    @property
    def processed(self) -> int:
        return self.updated + self.skipped + self.errors


class BatchRunner:
    """
    Sequential, throttled, single-flight batch extraction.

    Usage:
        runner = BatchRunner(ProductExtractor())
        result = await runner.run_batch(["B08N5WRWNW", "B07FZ8S74R"])
    """

    def __init__(
        self,
        extractor: ProductExtractor,
        delay_seconds: float | None = None,
        shutdown_after: bool = True,
    ) -> None:
        self.extractor = extractor
        self.delay_seconds = settings.BATCH_DELAY_SECONDS if delay_seconds is None else delay_seconds
        self.shutdown_after = shutdown_after
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_batch(
        self,
        asins: Iterable[str],
        on_progress: ProgressCallback | None = None,
        on_result: ResultCallback | None = None,
    ) -> BatchResult:
        """
        Extract every ASIN in order.

        Args:
            asins: ASINs to process, in order.
            on_progress: Called as (done, total, asin) after each item.
            on_result: Async hook deciding whether a result was recorded.
                True counts as updated, False as skipped. Without it every
                successful extraction counts as updated.

        Returns:
            BatchResult. When another batch is in flight, returns immediately
            with already_running=True and nothing processed.
        """
        # Checked and set with no await in between: atomic on the event loop.
        if self._running:
            logger.warning("batch_already_running", source="batch")
            return BatchResult(already_running=True)
        self._running = True

        result = BatchResult()
        items = list(asins)
        total = len(items)
        logger.info("batch_started", total=total, source="batch")

        try:
            for index, asin in enumerate(items):
                if index > 0:
                    await asyncio.sleep(self.delay_seconds)

                try:
                    data = await self.extractor.extract_product(asin)
                    recorded = True if on_result is None else await on_result(data)
                except Exception as e:
                    result.errors += 1
                    result.failures[asin] = str(e)
                    logger.error(
                        "batch_item_failed",
                        asin=asin,
                        error=str(e),
                        error_type=type(e).__name__,
                        source="batch",
                    )
                else:
                    if recorded:
                        result.updated += 1
                    else:
                        result.skipped += 1

                if on_progress is not None:
                    on_progress(index + 1, total, asin)
        finally:
            try:
                if self.shutdown_after:
                    await self.extractor.close()
            finally:
                self._running = False

        logger.info(
            "batch_complete",
            updated=result.updated,
            skipped=result.skipped,
            errors=result.errors,
            source="batch",
        )
        return result
