"""
Price Tracker - Price History Recorder

Turns ScrapedProductData into price_history rows. The extraction core only
produces the struct; this module decides whether an observation is worth
appending (RECORD_POLICY) and keeps the product's title/categories fresh.

Policies:
- decrease: record the first observation or a price drop
- change:   record the first observation or any price move
- always:   record every successful extraction
An availability transition (in stock <-> unavailable) is always recorded;
a repeated "unavailable" is not.
"""

from __future__ import annotations

from typing import Callable

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import RecordPolicy, settings
from src.models.price_history import PriceHistory
from src.models.product import Product
from src.scraper import ScrapedProductData
from src.scraper.batch import BatchResult, BatchRunner

logger = structlog.get_logger(__name__)


async def get_last_observation(session: AsyncSession, product_id: int) -> PriceHistory | None:
    """Most recent price_history row for a product, or None."""
    stmt = (
        select(PriceHistory)
        .where(PriceHistory.product_id == product_id)
        .order_by(PriceHistory.recorded_at.desc(), PriceHistory.id.desc())
        .limit(1)
    )
    return (await session.execute(stmt)).scalar_one_or_none()


def should_record(
    last: PriceHistory | None,
    data: ScrapedProductData,
    policy: RecordPolicy,
) -> bool:
    """Decide whether `data` is appended after `last`."""
    if last is None:
        return True
    if last.available != data.available:
        return True
    if not data.available:
        return False
    if policy is RecordPolicy.ALWAYS or last.price is None:
        return True
    if policy is RecordPolicy.CHANGE:
        return data.price != last.price
    return data.price < last.price


async def upsert_product(session: AsyncSession, data: ScrapedProductData) -> Product:
    """Fetch the product row for data.asin, creating it if needed, and refresh metadata."""
    stmt = select(Product).where(Product.asin == data.asin)
    product = (await session.execute(stmt)).scalar_one_or_none()

    if product is None:
        product = Product(asin=data.asin, title=data.title, categories=data.categories)
        session.add(product)
        await session.flush()
        logger.info("product_created", asin=data.asin, product_id=product.id, source="price_updater")
        return product

    if data.title != product.title:
        product.title = data.title
    if data.categories and data.categories != (product.categories or []):
        logger.info(
            "product_categories_updated",
            asin=data.asin,
            categories=" > ".join(data.categories),
            source="price_updater",
        )
        product.categories = data.categories
    return product


async def record_observation(
    session: AsyncSession,
    data: ScrapedProductData,
    policy: RecordPolicy | None = None,
) -> bool:
    """
    Upsert the product and append a price_history row if the policy allows.

    Commits the session.

    Returns:
        True when a row was appended.
    """
    policy = policy or settings.RECORD_POLICY
    product = await upsert_product(session, data)
    last = await get_last_observation(session, product.id)
    recorded = should_record(last, data, policy)

    if recorded:
        session.add(
            PriceHistory(
                product_id=product.id,
                price=data.price,
                available=data.available,
                unavailable_reason=data.unavailable_reason,
            )
        )
        logger.info(
            "price_recorded",
            asin=data.asin,
            price=str(data.price) if data.price is not None else None,
            previous=str(last.price) if last is not None and last.price is not None else None,
            available=data.available,
            policy=policy.value,
            source="price_updater",
        )
    else:
        logger.info(
            "price_skipped",
            asin=data.asin,
            price=str(data.price) if data.price is not None else None,
            previous=str(last.price) if last is not None and last.price is not None else None,
            policy=policy.value,
            source="price_updater",
        )

    await session.commit()
    return recorded


async def update_all_prices(
    session_factory: async_sessionmaker[AsyncSession],
    runner: BatchRunner,
    policy: RecordPolicy | None = None,
    on_progress: Callable[[int, int, str], None] | None = None,
) -> BatchResult:
    """
    Run one throttled batch over every tracked product.

    Each result is recorded in its own session so one bad row cannot roll
    back the others.
    """
    async with session_factory() as session:
        asins = list((await session.execute(select(Product.asin).order_by(Product.id))).scalars())

    logger.info("price_update_started", products=len(asins), source="price_updater")

    async def on_result(data: ScrapedProductData) -> bool:
        async with session_factory() as session:
            return await record_observation(session, data, policy)

    result = await runner.run_batch(asins, on_progress=on_progress, on_result=on_result)

    if result.already_running:
        logger.warning("price_update_skipped_already_running", source="price_updater")
    else:
        logger.info(
            "price_update_complete",
            updated=result.updated,
            skipped=result.skipped,
            errors=result.errors,
            source="price_updater",
        )
    return result
