"""
Tests for the price history recorder.

Covers:
- Record policies (decrease / change / always)
- Availability transitions
- Product upsert and category refresh
- update_all_prices wiring through BatchRunner
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from src.config import RecordPolicy
from src.models import PriceHistory, Product
from src.pipeline.price_updater import (
    get_last_observation,
    record_observation,
    should_record,
    update_all_prices,
)
from src.scraper.batch import BatchRunner
from src.scraper.errors import BlockedError


def _history(price: str | None, available: bool = True) -> PriceHistory:
    return PriceHistory(
        product_id=1,
        price=Decimal(price) if price is not None else None,
        available=available,
    )


async def _history_count(session) -> int:
    return (await session.execute(select(func.count()).select_from(PriceHistory))).scalar_one()


class TestShouldRecord:
    def test_first_observation(self, make_scraped) -> None:
        assert should_record(None, make_scraped(price="50.00"), RecordPolicy.DECREASE) is True

    @pytest.mark.parametrize(
        ("policy", "new", "expected"),
        [
            (RecordPolicy.DECREASE, "79.90", True),
            (RecordPolicy.DECREASE, "89.90", False),
            (RecordPolicy.DECREASE, "99.90", False),
            (RecordPolicy.CHANGE, "89.90", False),
            (RecordPolicy.CHANGE, "99.90", True),
            (RecordPolicy.ALWAYS, "89.90", True),
        ],
    )
    def test_policies(self, make_scraped, policy, new, expected) -> None:
        assert should_record(_history("89.90"), make_scraped(price=new), policy) is expected

    def test_went_unavailable(self, make_scraped) -> None:
        """Going out of stock is always recorded."""
        last = _history("89.90")
        assert should_record(last, make_scraped(price=None, available=False), RecordPolicy.DECREASE) is True

    def test_back_in_stock(self, make_scraped) -> None:
        """Coming back is recorded even at a higher price."""
        last = _history(None, available=False)
        assert should_record(last, make_scraped(price="999.00"), RecordPolicy.DECREASE) is True

    def test_still_unavailable(self, make_scraped) -> None:
        last = _history(None, available=False)
        unavailable = make_scraped(price=None, available=False)
        assert should_record(last, unavailable, RecordPolicy.ALWAYS) is False


class TestRecordObservation:
    async def test_creates_product_and_first_row(self, db_session, make_scraped) -> None:
        data = make_scraped(categories=["Electronics", "Mice"])
        assert await record_observation(db_session, data, RecordPolicy.DECREASE) is True

        product = (await db_session.execute(select(Product))).scalar_one()
        assert product.asin == data.asin
        assert product.categories == ["Electronics", "Mice"]

        last = await get_last_observation(db_session, product.id)
        assert last.price == Decimal("89.90")
        assert last.available is True

    async def test_decrease_policy_sequence(self, db_session, make_scraped) -> None:
        """Only drops after the first price are appended."""
        for price in ("89.90", "99.90", "79.90", "79.90"):
            await record_observation(db_session, make_scraped(price=price), RecordPolicy.DECREASE)

        assert await _history_count(db_session) == 2
        product = (await db_session.execute(select(Product))).scalar_one()
        assert (await get_last_observation(db_session, product.id)).price == Decimal("79.90")

    async def test_unavailable_row(self, db_session, make_scraped) -> None:
        await record_observation(db_session, make_scraped(price="10.00"), RecordPolicy.DECREASE)
        await record_observation(db_session, make_scraped(price=None, available=False), RecordPolicy.DECREASE)

        product = (await db_session.execute(select(Product))).scalar_one()
        last = await get_last_observation(db_session, product.id)
        assert last.available is False
        assert last.price is None
        assert last.unavailable_reason == "Currently unavailable."

    async def test_categories_refreshed(self, db_session, make_scraped) -> None:
        await record_observation(db_session, make_scraped(categories=["Old"]), RecordPolicy.DECREASE)
        await record_observation(
            db_session,
            make_scraped(price="89.90", categories=["Electronics", "Mice"], title="Wireless Mouse v2"),
            RecordPolicy.DECREASE,
        )

        product = (await db_session.execute(select(Product))).scalar_one()
        assert product.categories == ["Electronics", "Mice"]
        assert product.title == "Wireless Mouse v2"

    async def test_missing_categories_keep_old(self, db_session, make_scraped) -> None:
        await record_observation(db_session, make_scraped(categories=["Casa"]), RecordPolicy.DECREASE)
        await record_observation(db_session, make_scraped(categories=None), RecordPolicy.DECREASE)
        product = (await db_session.execute(select(Product))).scalar_one()
        assert product.categories == ["Casa"]


class TestUpdateAllPrices:
    async def test_updates_every_tracked_product(self, db_session_factory, make_scraped) -> None:
        async with db_session_factory() as session:
            for asin, price in (("B08N5WRWNW", "100.00"), ("B07FZ8S74R", "50.00")):
                await record_observation(session, make_scraped(asin=asin, price=price), RecordPolicy.ALWAYS)

        prices = {"B08N5WRWNW": "90.00", "B07FZ8S74R": "55.00"}
        extractor = AsyncMock()
        extractor.extract_product = AsyncMock(side_effect=lambda asin: make_scraped(asin=asin, price=prices[asin]))
        runner = BatchRunner(extractor, delay_seconds=0)

        result = await update_all_prices(db_session_factory, runner, RecordPolicy.DECREASE)

        assert (result.updated, result.skipped, result.errors) == (1, 1, 0)
        extractor.close.assert_awaited_once()
        async with db_session_factory() as session:
            assert await _history_count(session) == 3

    async def test_errors_isolated(self, db_session_factory, make_scraped) -> None:
        async with db_session_factory() as session:
            await record_observation(session, make_scraped(asin="B08N5WRWNW"), RecordPolicy.ALWAYS)
            await record_observation(session, make_scraped(asin="B07FZ8S74R"), RecordPolicy.ALWAYS)

        def extract(asin):
            if asin == "B08N5WRWNW":
                raise BlockedError(asin)
            return make_scraped(asin=asin, price="1.00")

        extractor = AsyncMock()
        extractor.extract_product = AsyncMock(side_effect=extract)
        result = await update_all_prices(db_session_factory, BatchRunner(extractor, delay_seconds=0))

        assert result.errors == 1
        assert result.updated == 1
        assert "B08N5WRWNW" in result.failures

    async def test_no_products(self, db_session_factory) -> None:
        extractor = AsyncMock()
        result = await update_all_prices(db_session_factory, BatchRunner(extractor, delay_seconds=0))
        assert result.processed == 0
        extractor.extract_product.assert_not_awaited()
