"""
Price Tracker - Price History Model

Append-only log of price observations per product.
Never updated. Whether a scrape appends a row is decided by
pipeline/price_updater.py according to RECORD_POLICY.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import BOOLEAN, DECIMAL, TIMESTAMP, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base


class PriceHistory(Base):
    """
    One price observation.

    price is NULL exactly when available is false; unavailable_reason then
    carries the message shown on the page.

    Index: (product_id, recorded_at) supports "latest price" lookups.
    """

    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"),
        nullable=False,
    )
    price: Mapped[Decimal | None] = mapped_column(
        DECIMAL(10, 2),
        nullable=True,
        comment="Price in BRL; NULL when unavailable",
    )
    available: Mapped[bool] = mapped_column(
        BOOLEAN,
        default=True,
        nullable=False,
    )
    unavailable_reason: Mapped[str | None] = mapped_column(String, nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
        nullable=False,
        comment="UTC timestamp of the observation",
    )

    product: Mapped["Product"] = relationship(back_populates="price_history")  # noqa: F821

    __table_args__ = (
        Index("ix_price_history_product_recorded", "product_id", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<PriceHistory product_id={self.product_id!r} price={self.price} "
            f"available={self.available!r} at={self.recorded_at}>"
        )
