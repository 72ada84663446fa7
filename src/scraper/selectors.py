"""
Price Tracker - Selector Resolution Chain

Each logical field (title, price, category) has an ORDERED tuple of
strategies, most reliable first. The chain runner tries them in order and
the first non-empty result wins. A selector wait that times out is a miss,
never an error; only transport failures (page closed, target crashed)
propagate.

Timeouts shrink down each chain so the worst-case wait stays bounded.

In-page JavaScript only collects raw DOM data. Choosing among candidates
(largest font, dropping the "home" breadcrumb, label matching) happens here
in Python.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from src.scraper import NOT_FOUND, PriceFragment, SelectorOutcome

logger = structlog.get_logger(__name__)


class FieldKind(str, Enum):
    TITLE = "title"
    PRICE = "price"
    CATEGORY = "category"


@dataclass(frozen=True)
class SelectorStrategy:
    """One DOM query approach for a field, tried with its own timeout."""
    strategy_id: str
    timeout_ms: int
    extract: Callable[[Any, int], Awaitable[Any]]


# ---------------------------------------------------------------------------
# In-page collectors (run via page.evaluate)
# ---------------------------------------------------------------------------

# Candidates inside the "price to pay" block, skipping strikethrough prices.
# Each carries its computed font size so the most prominent can be chosen.
PAY_PRICE_JS = """
() => {
  const container = document.querySelector('.a-price.priceToPay');
  if (!container) return [];
  const isStruck = (el) => {
    const price = el.closest('.a-price');
    return !!price && (price.classList.contains('a-text-price')
      || price.querySelector('.a-text-strike') !== null);
  };
  const candidates = [];
  container.querySelectorAll('.a-offscreen').forEach((el) => {
    const text = (el.textContent || '').trim();
    const parent = el.parentElement || el;
    if (text.includes('R$') && parent.offsetParent !== null && !isStruck(el)) {
      candidates.push({
        source: 'offscreen',
        text: text,
        fontSize: window.getComputedStyle(parent).fontSize,
      });
    }
  });
  const whole = container.querySelector('span.a-price-whole');
  if (whole && whole.offsetParent !== null && !isStruck(whole)) {
    const fraction = container.querySelector('span.a-price-fraction');
    const wholeText = (whole.textContent || '').trim();
    if (wholeText) {
      candidates.push({
        source: 'visible',
        whole: wholeText,
        fraction: fraction ? (fraction.textContent || '').trim() : '',
        fontSize: window.getComputedStyle(whole).fontSize,
      });
    }
  }
  return candidates;
}
"""

# First offscreen price text under the first matching root (or the document).
OFFSCREEN_TEXT_JS = """
(roots) => {
  let root = document;
  if (roots) {
    root = null;
    for (const selector of roots) {
      root = document.querySelector(selector);
      if (root) break;
    }
    if (!root) return null;
  }
  for (const el of root.querySelectorAll('.a-price .a-offscreen')) {
    const text = (el.textContent || '').trim();
    if (/\\d/.test(text)) return text;
  }
  return null;
}
"""

# First visible whole/fraction span pair under the first matching root.
VISIBLE_SPLIT_JS = """
(roots) => {
  let root = document;
  if (roots) {
    root = null;
    for (const selector of roots) {
      root = document.querySelector(selector);
      if (root) break;
    }
    if (!root) return null;
  }
  const wholes = root.querySelectorAll('span.a-price-whole');
  const fractions = root.querySelectorAll('span.a-price-fraction');
  for (let i = 0; i < wholes.length; i++) {
    if (wholes[i].offsetParent === null) continue;
    const whole = (wholes[i].textContent || '').trim();
    if (whole) {
      const fraction = fractions[i] ? (fractions[i].textContent || '').trim() : '';
      return { whole: whole, fraction: fraction };
    }
  }
  return null;
}
"""

# Link texts of the first breadcrumb container found.
BREADCRUMB_JS = """
(roots) => {
  for (const selector of roots) {
    const container = document.querySelector(selector);
    if (!container) continue;
    const links = Array.from(container.querySelectorAll('a'));
    if (links.length > 0) return links.map((a) => (a.textContent || '').trim());
  }
  return [];
}
"""

# [rowText, lastCellText] for every product-details table row.
DETAIL_ROWS_JS = """
(rowSelector) => Array.from(document.querySelectorAll(rowSelector)).map((row) => {
  const cell = row.querySelector('td:last-child');
  return [(row.textContent || '').trim(), cell ? (cell.textContent || '').trim() : ''];
})
"""


# ---------------------------------------------------------------------------
# Selectors
# ---------------------------------------------------------------------------

PAY_PRICE_SELECTOR = ".a-price.priceToPay"
CORE_PRICE_ROOTS: tuple[str, ...] = (
    "#corePriceDisplay_desktop_feature_div",
    "#corePrice_feature_div",
)
PRICE_WHOLE_SELECTOR = "span.a-price-whole"
GENERIC_OFFSCREEN_SELECTOR = ".a-price .a-offscreen"

BREADCRUMB_ROOTS: tuple[str, ...] = (
    "#wayfinding-breadcrumbs_feature_div",
    ".a-breadcrumb",
    'nav[aria-label="Breadcrumb"]',
)
DETAIL_TABLE_SELECTOR = "#productDetails_feature_div, #productDetails_db_sections"
DETAIL_ROW_SELECTOR = "#productDetails_feature_div tr, #productDetails_db_sections tr"
CATEGORY_META_SELECTOR = 'meta[property="product:category"]'

CATEGORY_LABELS: tuple[str, ...] = ("categoria", "departamento", "category", "department")

_DETAIL_DELIMITERS = re.compile(r"[>|•›]")
_META_DELIMITERS = re.compile(r"[>|:•›]")
_FONT_SIZE = re.compile(r"[\d.]+")


# ---------------------------------------------------------------------------
# Candidate selection helpers
# ---------------------------------------------------------------------------

def _font_size(value: Any) -> float:
    match = _FONT_SIZE.search(str(value or ""))
    if match is None:
        return 0.0
    try:
        return float(match.group())
    except ValueError:
        return 0.0


def _to_fragment(candidate: dict[str, Any] | None) -> PriceFragment | None:
    if not candidate:
        return None
    if candidate.get("whole"):
        return PriceFragment.split(candidate["whole"], candidate.get("fraction") or "")
    if candidate.get("text"):
        return PriceFragment.offscreen(candidate["text"])
    return None


def pick_prominent_price(candidates: list[dict[str, Any]] | None) -> PriceFragment | None:
    """
    Choose the price rendered with the largest computed font size.

    Best-effort heuristic: the displayed price is usually bigger than a
    payment-method discount or list price shown beside it. The sort is
    stable, so ties keep DOM order (offscreen strings come first).
    """
    if not candidates:
        return None
    ranked = sorted(candidates, key=lambda c: _font_size(c.get("fontSize")), reverse=True)
    for candidate in ranked:
        fragment = _to_fragment(candidate)
        if fragment is not None:
            return fragment
    return None


def breadcrumb_categories(link_texts: list[str] | None) -> list[str]:
    """Breadcrumb link texts minus the leading home link."""
    if not link_texts:
        return []
    return [text.strip() for text in link_texts[1:] if text and text.strip()]


def split_category_path(value: str | None, delimiters: re.Pattern[str] = _DETAIL_DELIMITERS) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in delimiters.split(value) if part.strip()]


def categories_from_detail_rows(rows: list[list[str]] | None) -> list[str]:
    """Category path from the first details row labelled category/department."""
    for row in rows or []:
        if len(row) < 2:
            continue
        row_text, value = row[0], row[1]
        if any(label in (row_text or "").lower() for label in CATEGORY_LABELS):
            path = split_category_path(value)
            if path:
                return path
    return []


# ---------------------------------------------------------------------------
# Strategy builders
# ---------------------------------------------------------------------------

def _visible_text(selector: str) -> Callable[[Any, int], Awaitable[str | None]]:
    """Text of `selector` once it is visible, stripped."""

    async def extract(page: Any, timeout_ms: int) -> str | None:
        await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        text = await page.text_content(selector)
        return (text or "").strip() or None

    return extract


async def _pay_price(page: Any, timeout_ms: int) -> PriceFragment | None:
    await page.wait_for_selector(PAY_PRICE_SELECTOR, state="visible", timeout=timeout_ms)
    candidates = await page.evaluate(PAY_PRICE_JS)
    return pick_prominent_price(candidates)


async def _offscreen_then_split(page: Any, roots: list[str] | None) -> PriceFragment | None:
    text = await page.evaluate(OFFSCREEN_TEXT_JS, roots)
    if text:
        return PriceFragment.offscreen(text)
    return _to_fragment(await page.evaluate(VISIBLE_SPLIT_JS, roots))


async def _core_price(page: Any, timeout_ms: int) -> PriceFragment | None:
    await page.wait_for_selector(", ".join(CORE_PRICE_ROOTS), state="visible", timeout=timeout_ms)
    return await _offscreen_then_split(page, list(CORE_PRICE_ROOTS))


async def _visible_split(page: Any, timeout_ms: int) -> PriceFragment | None:
    await page.wait_for_selector(PRICE_WHOLE_SELECTOR, state="visible", timeout=timeout_ms)
    return _to_fragment(await page.evaluate(VISIBLE_SPLIT_JS, None))


async def _generic_offscreen(page: Any, timeout_ms: int) -> PriceFragment | None:
    # Offscreen spans are visually hidden, so only wait for them to exist.
    await page.wait_for_selector(GENERIC_OFFSCREEN_SELECTOR, state="attached", timeout=timeout_ms)
    text = (await page.text_content(GENERIC_OFFSCREEN_SELECTOR) or "").strip()
    if not re.search(r"\d", text):
        return None
    return PriceFragment.offscreen(text)


async def _breadcrumbs(page: Any, timeout_ms: int) -> list[str]:
    await page.wait_for_selector(", ".join(BREADCRUMB_ROOTS), state="attached", timeout=timeout_ms)
    return breadcrumb_categories(await page.evaluate(BREADCRUMB_JS, list(BREADCRUMB_ROOTS)))


async def _detail_rows(page: Any, timeout_ms: int) -> list[str]:
    await page.wait_for_selector(DETAIL_TABLE_SELECTOR, state="attached", timeout=timeout_ms)
    return categories_from_detail_rows(await page.evaluate(DETAIL_ROWS_JS, DETAIL_ROW_SELECTOR))


async def _meta_category(page: Any, timeout_ms: int) -> list[str]:
    await page.wait_for_selector(CATEGORY_META_SELECTOR, state="attached", timeout=timeout_ms)
    element = await page.query_selector(CATEGORY_META_SELECTOR)
    if element is None:
        return []
    return split_category_path(await element.get_attribute("content"), _META_DELIMITERS)


# ---------------------------------------------------------------------------
# Strategy tables (priority order)
# ---------------------------------------------------------------------------

TITLE_STRATEGIES: tuple[SelectorStrategy, ...] = (
    SelectorStrategy("title_id", 25000, _visible_text("#productTitle")),
    SelectorStrategy("title_span_id", 15000, _visible_text("span#productTitle")),
    SelectorStrategy("title_h1_large", 12000, _visible_text("h1.a-size-large")),
    SelectorStrategy("title_h1_automation", 10000, _visible_text('h1[data-automation-id="title"]')),
    SelectorStrategy(
        "title_aria_heading",
        5000,
        _visible_text(
            '#title_feature_div h1[aria-label], #title_feature_div [role="heading"][aria-level="1"]'
        ),
    ),
)

PRICE_STRATEGIES: tuple[SelectorStrategy, ...] = (
    SelectorStrategy("pay_price", 10000, _pay_price),
    SelectorStrategy("core_price", 10000, _core_price),
    SelectorStrategy("visible_split", 10000, _visible_split),
    SelectorStrategy("generic_offscreen", 5000, _generic_offscreen),
)

CATEGORY_STRATEGIES: tuple[SelectorStrategy, ...] = (
    SelectorStrategy("breadcrumbs", 5000, _breadcrumbs),
    SelectorStrategy("detail_rows", 3000, _detail_rows),
    SelectorStrategy("meta_category", 2000, _meta_category),
)

STRATEGIES: dict[FieldKind, tuple[SelectorStrategy, ...]] = {
    FieldKind.TITLE: TITLE_STRATEGIES,
    FieldKind.PRICE: PRICE_STRATEGIES,
    FieldKind.CATEGORY: CATEGORY_STRATEGIES,
}


# ---------------------------------------------------------------------------
# Chain runner
# ---------------------------------------------------------------------------

async def resolve_field(
    page: Any,
    field: FieldKind,
    strategies: tuple[SelectorStrategy, ...] | None = None,
) -> SelectorOutcome:
    """
    Try each strategy for `field` in priority order; first hit wins.

    Args:
        page: Playwright Page object.
        field: Which logical field to resolve.
        strategies: Override the default strategy table for `field`.

    Returns:
        SelectorOutcome with the value and strategy id, or NOT_FOUND.
    """
    chain = strategies if strategies is not None else STRATEGIES[field]

    for strategy in chain:
        try:
            value = await strategy.extract(page, strategy.timeout_ms)
        except PlaywrightTimeoutError:
            value = None

        if value:
            logger.info(
                "selector_hit",
                field=field.value,
                strategy=strategy.strategy_id,
                source="selectors",
            )
            return SelectorOutcome(value, strategy.strategy_id)

        logger.debug(
            "selector_miss",
            field=field.value,
            strategy=strategy.strategy_id,
            timeout_ms=strategy.timeout_ms,
            source="selectors",
        )

    logger.info("selector_chain_exhausted", field=field.value, source="selectors")
    return NOT_FOUND
