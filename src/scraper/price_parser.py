"""
Price Tracker - Locale-Aware Price Parser

Amazon.com.br renders a price two ways:
- an offscreen accessibility string:  "R$ 1.234,56"
- visible split spans:                whole "1.234,"  fraction "56"

Both follow pt-BR rules ('.' groups thousands, ',' separates decimals) and
must normalize to the same Decimal. All money values use Decimal, never float.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

import structlog

from src.scraper import PriceFragment
from src.scraper.errors import PriceFormatError

logger = structlog.get_logger(__name__)

_NUMERIC_RUN = re.compile(r"\d[\d.,]*")
_CENT = Decimal("0.01")


def parse_price(fragment: PriceFragment | str | tuple[str, str | None]) -> Decimal:
    """
    Convert a raw price fragment to a Decimal with two decimal places.

    Args:
        fragment: A PriceFragment, a bare offscreen string, or a
            (whole, fraction) tuple.

    Returns:
        Price quantized to cents.

    Raises:
        PriceFormatError: No digits, malformed separators, or a non-finite result.

    Examples:
        >>> parse_price("R$ 1.234,56")
        Decimal('1234.56')
        >>> parse_price(("1.498,", "33"))
        Decimal('1498.33')
    """
    if isinstance(fragment, str):
        fragment = PriceFragment.offscreen(fragment)
    elif isinstance(fragment, tuple):
        whole, fraction = fragment
        fragment = PriceFragment.split(whole, fraction)

    if fragment.is_split:
        return parse_split_price(fragment.whole or "", fragment.fraction)
    return parse_offscreen_price(fragment.text or "")


def parse_offscreen_price(text: str) -> Decimal:
    """Parse a localized string such as 'R$ 1.234,56'."""
    match = _NUMERIC_RUN.search(text)
    if match is None:
        raise PriceFormatError(text, "no digits in price text")

    normalized = match.group().replace(".", "").replace(",", ".", 1)
    return _to_decimal(normalized, raw=text)


def parse_split_price(whole: str, fraction: str | None) -> Decimal:
    """
    Parse the visible whole/fraction spans.

    The whole part may carry thousands dots and a trailing decorative comma
    ("1.498,"). A missing or empty fraction means "00".
    """
    cleaned_whole = re.sub(r"[^\d,.]", "", whole)
    if cleaned_whole.endswith(","):
        cleaned_whole = cleaned_whole[:-1]
    cleaned_whole = cleaned_whole.replace(".", "")

    if not re.search(r"\d", cleaned_whole):
        raise PriceFormatError(f"{whole}|{fraction or ''}", "no digits in whole part")

    cleaned_fraction = re.sub(r"\D", "", fraction) if fraction else "00"

    price_string = f"{cleaned_whole}.{cleaned_fraction}"
    logger.debug(
        "price_split_normalized",
        whole=whole,
        fraction=fraction,
        price_string=price_string,
        source="price_parser",
    )
    return _to_decimal(price_string, raw=f"{whole}|{fraction or ''}")


def _to_decimal(value: str, raw: str) -> Decimal:
    """Build a finite, cent-quantized Decimal or raise PriceFormatError."""
    try:
        price = Decimal(value)
        if not price.is_finite():
            raise PriceFormatError(raw, "price is not finite")
        # Raises InvalidOperation when the digits exceed the context precision
        return price.quantize(_CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise PriceFormatError(raw) from None
