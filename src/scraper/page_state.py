"""
Price Tracker - Page State Classifier

Runs only after the happy-path selectors miss, to tell apart:
- a captcha / robot-check wall          -> BLOCKED (stop hammering, alert)
- a legitimately unavailable product    -> UNAVAILABLE(reason) (record it)
- anything else                          -> OK (stale selectors, retry/log)
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, NamedTuple

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = structlog.get_logger(__name__)

# Lower-case, English + Portuguese
BLOCK_KEYWORDS: tuple[str, ...] = (
    "captcha",
    "enter the characters you see below",
    "digite os caracteres",
    "robot",
    "robô",
    "verify",
    "verifique",
    "verificação",
)

UNAVAILABLE_PHRASES: tuple[str, ...] = (
    "currently unavailable",
    "out of stock",
    "no longer available",
    "não disponível",
    "não está disponível",
    "indisponível",
    "esgotado",
)

AVAILABILITY_SELECTORS: tuple[str, ...] = (
    "#availability .a-color-price",
    "#availability .a-color-state",
    "#outOfStock",
    "#availability",
)

_BODY_TEXT_TIMEOUT_MS = 5000


class PageStatus(str, Enum):
    OK = "ok"
    BLOCKED = "blocked"
    UNAVAILABLE = "unavailable"


class PageState(NamedTuple):
    status: PageStatus
    reason: str | None = None

    @property
    def is_blocked(self) -> bool:
        return self.status is PageStatus.BLOCKED

    @property
    def is_unavailable(self) -> bool:
        return self.status is PageStatus.UNAVAILABLE


PAGE_OK = PageState(PageStatus.OK)
PAGE_BLOCKED = PageState(PageStatus.BLOCKED)


async def classify_page(page: Any, check_block: bool = True) -> PageState:
    """
    Classify a product page whose primary extraction failed.

    Checks, in order: block keywords in the visible body text, then
    out-of-stock phrasing in the availability widgets or the body.

    Args:
        page: Playwright Page object.
        check_block: Scan for block keywords. Pass False once the title has
            been found: the body is then product text, and titles such as
            "Robô Aspirador" would read as a robot check.

    Returns:
        PageState with status BLOCKED, UNAVAILABLE (with reason) or OK.
    """
    body_text = await _body_text(page)
    lowered = body_text.lower()

    if check_block:
        for keyword in BLOCK_KEYWORDS:
            if keyword in lowered:
                logger.warning("page_state_blocked", keyword=keyword, source="page_state")
                return PAGE_BLOCKED

    reason = await detect_unavailability(page, body_text=body_text)
    if reason is not None:
        return PageState(PageStatus.UNAVAILABLE, reason)

    logger.info("page_state_unexplained", source="page_state")
    return PAGE_OK


async def detect_unavailability(page: Any, body_text: str | None = None) -> str | None:
    """
    Return the out-of-stock message shown on the page, or None.

    The availability widgets are checked first without waiting; the body
    text is only scanned when it was already fetched by the caller.
    """
    for selector in AVAILABILITY_SELECTORS:
        element = await page.query_selector(selector)
        if element is None:
            continue
        text = _collapse(await element.text_content() or "")
        if text and _mentions_unavailable(text):
            logger.info(
                "page_state_unavailable",
                selector=selector,
                reason=text,
                source="page_state",
            )
            return text

    if body_text:
        lowered = body_text.lower()
        for phrase in UNAVAILABLE_PHRASES:
            index = lowered.find(phrase)
            if index >= 0:
                reason = body_text[index:index + len(phrase)]
                logger.info(
                    "page_state_unavailable",
                    selector="body",
                    reason=reason,
                    source="page_state",
                )
                return reason

    return None


def _mentions_unavailable(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in UNAVAILABLE_PHRASES)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


async def _body_text(page: Any) -> str:
    """Visible text of <body>; empty when the body never rendered."""
    try:
        return await page.inner_text("body", timeout=_BODY_TEXT_TIMEOUT_MS) or ""
    except PlaywrightTimeoutError:
        return ""
