"""
Price Tracker - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- Fake Playwright pages (no browser, no network)
- Fake browser session handing out those pages
- In-memory aiosqlite database session / session factory
- Async test support via pytest-asyncio
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, AsyncGenerator, Callable

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.models.base import Base
from src.scraper import ScrapedProductData
from src.scraper.errors import SessionError
from src.scraper.selectors import BREADCRUMB_JS, BREADCRUMB_ROOTS, PAY_PRICE_JS, PAY_PRICE_SELECTOR


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)


# ---------------------------------------------------------------------------
# Fake Playwright objects
# ---------------------------------------------------------------------------


class FakeElement:
    """Stands in for an ElementHandle: text plus attributes."""

    def __init__(self, text: str | None = None, attributes: dict[str, str] | None = None):
        self._text = text
        self._attributes = attributes or {}

    async def text_content(self) -> str | None:
        return self._text

    async def get_attribute(self, name: str) -> str | None:
        return self._attributes.get(name)


class FakePage:
    """
    Minimal async Page double driven by dictionaries.

    visible / attached map a selector to its text content. A comma-separated
    selector group matches when any member is present. Visible selectors
    also count as attached. evaluations maps an in-page script to its
    return value, or to a callable taking the script argument.
    """

    def __init__(
        self,
        visible: dict[str, str] | None = None,
        attached: dict[str, str] | None = None,
        evaluations: dict[str, Any] | None = None,
        elements: dict[str, FakeElement] | None = None,
        body_text: str = "",
        goto_error: Exception | None = None,
    ):
        self.visible = visible or {}
        self.attached = attached or {}
        self.evaluations = evaluations or {}
        self.elements = elements or {}
        self.body_text = body_text
        self.goto_error = goto_error
        self.goto_calls: list[tuple[str, dict[str, Any]]] = []
        self.waited: list[tuple[str, str, int | None]] = []
        self.closed = False

    def _match(self, selector: str, state: str) -> str | None:
        pool = self.visible if state == "visible" else {**self.attached, **self.visible}
        candidates = [selector] + [part.strip() for part in selector.split(",")]
        for candidate in candidates:
            if candidate in pool:
                return candidate
        return None

    async def goto(self, url: str, **kwargs: Any) -> None:
        self.goto_calls.append((url, kwargs))
        if self.goto_error is not None:
            raise self.goto_error

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: int | None = None) -> FakeElement:
        self.waited.append((selector, state, timeout))
        key = self._match(selector, state)
        if key is None:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector!r}")
        return FakeElement({**self.attached, **self.visible}[key])

    async def text_content(self, selector: str, timeout: int | None = None) -> str | None:
        key = self._match(selector, "attached")
        if key is None:
            raise PlaywrightTimeoutError(f"Timeout waiting for {selector!r}")
        return {**self.attached, **self.visible}[key]

    async def inner_text(self, selector: str, timeout: int | None = None) -> str:
        return self.body_text

    async def query_selector(self, selector: str) -> FakeElement | None:
        return self.elements.get(selector)

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        value = self.evaluations.get(script)
        if callable(value):
            return value(arg)
        return value

    async def close(self) -> None:
        self.closed = True


class FakeSession:
    """
    BrowserSession double. Hands out the given pages in order; the last one
    is reused once the list runs out (or built fresh via page_factory).
    """

    def __init__(
        self,
        pages: list[FakePage] | None = None,
        page_factory: Callable[[], FakePage] | None = None,
        error: Exception | None = None,
    ):
        self._pages = list(pages or [])
        self._page_factory = page_factory
        self._error = error
        self.opened: list[FakePage] = []
        self.shutdown_calls = 0

    async def new_page(self) -> FakePage:
        if self._error is not None:
            raise self._error
        if self._page_factory is not None:
            page = self._page_factory()
        elif len(self._pages) > 1:
            page = self._pages.pop(0)
        else:
            page = self._pages[0]
        self.opened.append(page)
        return page

    async def shutdown(self) -> None:
        self.shutdown_calls += 1


def build_product_page(
    title: str = "Wireless Mouse",
    price_text: str | None = "R$ 89,90",
    breadcrumbs: list[str] | None = None,
    **kwargs: Any,
) -> FakePage:
    """A product page whose title, pay-price block and breadcrumbs all render."""
    visible = {"#productTitle": title}
    attached: dict[str, str] = {}
    evaluations: dict[str, Any] = {}

    if price_text is not None:
        visible[PAY_PRICE_SELECTOR] = price_text
        evaluations[PAY_PRICE_JS] = [
            {"source": "offscreen", "text": price_text, "fontSize": "28px"},
        ]
    if breadcrumbs is not None:
        attached[BREADCRUMB_ROOTS[0]] = " ".join(breadcrumbs)
        evaluations[BREADCRUMB_JS] = breadcrumbs

    visible.update(kwargs.pop("visible", {}))
    attached.update(kwargs.pop("attached", {}))
    evaluations.update(kwargs.pop("evaluations", {}))
    return FakePage(visible=visible, attached=attached, evaluations=evaluations, **kwargs)


@pytest.fixture
def make_page() -> Callable[..., FakePage]:
    """Factory for bare FakePage objects."""
    return FakePage


@pytest.fixture
def make_product_page() -> Callable[..., FakePage]:
    """Factory for FakePage objects that look like a rendered product page."""
    return build_product_page


@pytest.fixture
def make_session() -> Callable[..., FakeSession]:
    """Factory for FakeSession objects."""
    return FakeSession


@pytest.fixture
def element() -> Callable[..., FakeElement]:
    """Factory for FakeElement objects."""
    return FakeElement


@pytest.fixture
def broken_session() -> FakeSession:
    """A session whose browser never launches."""
    return FakeSession(error=SessionError("Failed to launch firefox: executable missing"))


@pytest.fixture
def navigation_error() -> PlaywrightError:
    return PlaywrightError("net::ERR_NAME_NOT_RESOLVED")


# ---------------------------------------------------------------------------
# Scraped data
# ---------------------------------------------------------------------------


@pytest.fixture
def make_scraped() -> Callable[..., ScrapedProductData]:
    """Factory for ScrapedProductData with sensible defaults."""

    def _make(
        asin: str = "B08N5WRWNW",
        price: str | None = "89.90",
        available: bool = True,
        **kwargs: Any,
    ) -> ScrapedProductData:
        kwargs.setdefault("title", "Wireless Mouse")
        if not available:
            kwargs.setdefault("unavailable_reason", "Currently unavailable.")
        return ScrapedProductData(
            asin=asin,
            price=Decimal(price) if price is not None else None,
            available=available,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,  # every session shares the one in-memory database
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(db_session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Async database session on a fresh in-memory database.

    Creates a fresh database for each test, ensuring isolation.
    """
    async with db_session_factory() as session:
        yield session
