"""
Price Tracker - Application Entrypoint

Initializes the async SQLAlchemy engine, configures structlog, creates the
tables and starts the price update scheduler.

Run via:
    python -m src.main
"""

from __future__ import annotations

import asyncio
import logging
import sys
from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings
from src.models import Base
from src.pipeline.scheduler import run_scheduler


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # stdlib logging for third-party libraries (sqlalchemy, asyncio)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine(database_url: str | None = None) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or settings.DATABASE_URL

    logger.info("database_engine_initializing", dialect=url.split(":", 1)[0])

    engine_kwargs: dict[str, Any] = {"echo": False}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=10, pool_pre_ping=True)

    engine = create_async_engine(url, **engine_kwargs)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready")
    return engine, session_factory


async def init_db(engine: Any) -> None:
    """Create products/price_history if they do not exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main() -> None:
    """
    Application entrypoint. Initializes subsystems and starts the scheduler.

    Execution order:
    1. Configure logging (structlog JSON)
    2. Create async database engine and session factory
    3. Create tables, then verify the connection (health check)
    4. Start the scheduler (runs until SIGINT/SIGTERM)
    """
    _configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("price_tracker_startup_begin", version="0.1.0")

    try:
        engine, session_factory = await create_db_engine()
    except Exception as e:
        logger.error(
            "database_engine_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        await init_db(engine)
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("database_health_check_passed")
    except Exception as e:
        logger.error(
            "database_health_check_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await engine.dispose()
        raise

    logger.info(
        "price_tracker_startup_complete",
        marketplace=settings.MARKETPLACE_BASE_URL,
        browser=settings.BROWSER_TYPE.value,
        interval_hours=settings.PRICE_UPDATE_INTERVAL_HOURS,
        record_policy=settings.RECORD_POLICY.value,
    )

    try:
        await run_scheduler(engine, session_factory)
    except KeyboardInterrupt:
        logger.info("price_tracker_interrupted_by_user")
    except Exception as e:
        logger.error(
            "price_tracker_fatal_error",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await engine.dispose()
        logger.info("price_tracker_shutdown_complete")


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
