"""Price Tracker - Extraction core data types"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, NamedTuple

from pydantic import BaseModel, Field, field_validator, model_validator

_CENT = Decimal("0.01")


class ScrapedProductData(BaseModel):
    """
    Structured result of one product-page extraction.

    Invariant: available is False exactly when price is None. When the
    product is available, price is finite, non-negative and carries at most
    two decimal places.
    """
    asin: str = Field(pattern=r"^[A-Z0-9]{10}$")
    title: str
    price: Decimal | None = None
    available: bool = True
    unavailable_reason: str | None = None
    categories: list[str] | None = None
    price_method: str | None = None  # strategy id that produced the price
    scraped_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must be non-empty")
        return value

    @model_validator(mode="after")
    def _check_availability(self) -> ScrapedProductData:
        if self.available:
            if self.price is None:
                raise ValueError("available product must carry a price")
            if not self.price.is_finite() or self.price < 0:
                raise ValueError(f"price must be finite and non-negative, got {self.price}")
            if self.price != self.price.quantize(_CENT):
                raise ValueError(f"price has more than 2 decimal places: {self.price}")
            if self.unavailable_reason is not None:
                raise ValueError("unavailable_reason is only set for unavailable products")
        elif self.price is not None:
            raise ValueError("unavailable product must not carry a price")
        return self


class SelectorOutcome(NamedTuple):
    """Result of resolving one field: a hit with the strategy id, or a miss."""
    value: Any = None
    strategy_id: str | None = None

    @property
    def found(self) -> bool:
        return self.strategy_id is not None


NOT_FOUND = SelectorOutcome()


class PriceFragment(BaseModel):
    """
    Raw price as rendered on the page.

    Either an offscreen localized string ("R$ 1.234,56") or the visible
    split spans: whole ("1.234,") and fraction ("56").
    """
    text: str | None = None
    whole: str | None = None
    fraction: str | None = None

    @model_validator(mode="after")
    def _one_shape(self) -> PriceFragment:
        if (self.text is None) == (self.whole is None):
            raise ValueError("PriceFragment needs either text or whole, not both")
        return self

    @classmethod
    def offscreen(cls, text: str) -> PriceFragment:
        return cls(text=text)

    @classmethod
    def split(cls, whole: str, fraction: str | None = None) -> PriceFragment:
        return cls(whole=whole, fraction=fraction)

    @property
    def is_split(self) -> bool:
        return self.whole is not None

    def __str__(self) -> str:
        if self.is_split:
            return f"{self.whole}|{self.fraction or ''}"
        return self.text or ""


__all__ = [
    "NOT_FOUND",
    "PriceFragment",
    "ScrapedProductData",
    "SelectorOutcome",
]
