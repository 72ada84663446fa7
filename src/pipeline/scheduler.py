"""
Price Tracker - Update Scheduler

Runs the full price update (every tracked ASIN, one throttled batch) on a
fixed cadence. The loop wakes every few seconds to check whether the next
run is due, so shutdown and manual triggers are picked up promptly.

Cadence:
- PRICE_UPDATE_INTERVAL_HOURS (default 24h), first run one interval after start
- trigger_now() makes the next check start a run immediately
"""

from __future__ import annotations

import asyncio
import signal
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.pipeline.price_updater import update_all_prices
from src.scraper.batch import BatchResult, BatchRunner
from src.scraper.extractor import ProductExtractor

logger = structlog.get_logger(__name__)


class Scheduler:
    """
    Async scheduler for the periodic price update.

    One BatchRunner is kept for the scheduler's lifetime so its single-flight
    flag also covers manual triggers.
    """

    def __init__(
        self,
        db_engine: Any,
        session_factory: async_sessionmaker[AsyncSession],
        runner: BatchRunner | None = None,
        interval_hours: float | None = None,
        check_interval_seconds: float = 5,
    ):
        self.db_engine = db_engine
        self.session_factory = session_factory
        self.runner = runner or BatchRunner(ProductExtractor())
        self.interval = timedelta(
            hours=settings.PRICE_UPDATE_INTERVAL_HOURS if interval_hours is None else interval_hours
        )
        self.check_interval_seconds = check_interval_seconds
        self._shutdown_event = asyncio.Event()
        self._next_run: datetime = datetime.now(timezone.utc) + self.interval
        self.last_result: BatchResult | None = None

    @property
    def next_run(self) -> datetime:
        return self._next_run

    async def shutdown(self) -> None:
        """Signal graceful shutdown to the scheduler loop."""
        logger.info("scheduler_shutdown_requested", source="scheduler")
        self._shutdown_event.set()

    def trigger_now(self) -> None:
        """Make the next loop check start a price update."""
        self._next_run = datetime.now(timezone.utc)
        logger.info("scheduler_manual_trigger", source="scheduler")

    def _should_update(self) -> bool:
        return datetime.now(timezone.utc) >= self._next_run

    async def run_update(self) -> BatchResult:
        """
        Run one price update and schedule the next one.

        Returns:
            The batch tally (already_running=True if a batch was in flight).
        """
        logger.info("scheduler_update_start", source="scheduler")
        try:
            result = await update_all_prices(self.session_factory, self.runner)
        finally:
            self._next_run = datetime.now(timezone.utc) + self.interval

        self.last_result = result
        logger.info(
            "scheduler_update_complete",
            updated=result.updated,
            skipped=result.skipped,
            errors=result.errors,
            next_run=self._next_run.isoformat(),
            source="scheduler",
        )
        return result

    async def run(self) -> None:
        """
        Main scheduler loop. Runs until shutdown is signaled.

        A failed update is logged and the loop keeps going.
        """
        logger.info(
            "scheduler_started",
            interval_hours=self.interval.total_seconds() / 3600,
            next_run=self._next_run.isoformat(),
            source="scheduler",
        )

        try:
            while not self._shutdown_event.is_set():
                try:
                    if self._should_update():
                        await self.run_update()

                    await asyncio.wait_for(
                        self._shutdown_event.wait(),
                        timeout=self.check_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    continue
                except Exception as e:
                    logger.error(
                        "scheduler_update_failed",
                        error=str(e),
                        error_type=type(e).__name__,
                        source="scheduler",
                    )
                    await asyncio.sleep(self.check_interval_seconds)

        except asyncio.CancelledError:
            logger.info("scheduler_cancelled", source="scheduler")
            raise
        finally:
            logger.info("scheduler_stopped", source="scheduler")


async def run_scheduler(db_engine: Any, session_factory: async_sessionmaker[AsyncSession]) -> None:
    """
    Initialize and run the scheduler with graceful shutdown handling.

    Registers SIGTERM/SIGINT handlers to trigger shutdown.

    Args:
        db_engine: SQLAlchemy async engine.
        session_factory: SQLAlchemy async session factory.
    """
    scheduler = Scheduler(db_engine, session_factory)

    def handle_signal(signum: int) -> None:
        logger.info("scheduler_signal_received", signal=signal.Signals(signum).name, source="scheduler")
        asyncio.create_task(scheduler.shutdown())

    loop = asyncio.get_running_loop()

    try:
        loop.add_signal_handler(signal.SIGTERM, handle_signal, signal.SIGTERM)
        loop.add_signal_handler(signal.SIGINT, handle_signal, signal.SIGINT)
    except NotImplementedError:
        # Windows event loops
        logger.warning("signal_handlers_not_supported_on_platform", source="scheduler")

    try:
        await scheduler.run()
    except Exception as e:
        logger.error("scheduler_fatal_error", error=str(e), error_type=type(e).__name__, source="scheduler")
        raise
    finally:
        await scheduler.runner.extractor.close()
