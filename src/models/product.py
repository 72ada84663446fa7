"""
Price Tracker - Product Model

One row per tracked ASIN. Title and category path are refreshed from the
latest successful extraction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, TIMESTAMP, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.models.base import Base


class Product(Base):
    """A product being tracked on the marketplace."""

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    asin: Mapped[str] = mapped_column(
        String(10),
        unique=True,
        nullable=False,
        comment="Normalized (uppercase) 10-character ASIN",
    )
    title: Mapped[str] = mapped_column(
        String,
        nullable=False,
        comment="Product title as shown on the product page",
    )
    categories: Mapped[list[str] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Breadcrumb path, root to leaf",
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    price_history: Mapped[list["PriceHistory"]] = relationship(  # noqa: F821
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="PriceHistory.recorded_at",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id!r} asin={self.asin!r} title={self.title[:30]!r}>"
