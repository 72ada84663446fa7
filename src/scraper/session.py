"""
Price Tracker - Browser Session Manager

Owns the one long-lived resource of the extraction core: a headless
browser process and a single browsing context with a fixed desktop user
agent and viewport. Every extraction attempt gets its own page from that
context so DOM state never leaks between attempts.

The session is created lazily on first use and torn down explicitly by its
owner (e.g. after a batch run).
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from src.config import BrowserType, settings
from src.scraper.errors import SessionError

logger = structlog.get_logger(__name__)

# Chromium needs these inside containers; Firefox/WebKit ignore them.
_CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
]


class BrowserSession:
    """
    Lazily launched browser + context shared by all extractions.

    Usage:
        async with BrowserSession() as session:
            page = await session.new_page()
    """

    def __init__(
        self,
        browser_type: BrowserType | str | None = None,
        headless: bool | None = None,
        user_agent: str | None = None,
        viewport: dict[str, int] | None = None,
        playwright_factory: Callable[[], Any] = async_playwright,
    ) -> None:
        self.browser_type = BrowserType(browser_type or settings.BROWSER_TYPE)
        self.headless = settings.BROWSER_HEADLESS if headless is None else headless
        self.user_agent = user_agent or settings.BROWSER_USER_AGENT
        self.viewport = viewport or {
            "width": settings.VIEWPORT_WIDTH,
            "height": settings.VIEWPORT_HEIGHT,
        }
        self._playwright_factory = playwright_factory
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._context is not None

    async def ensure_session(self) -> Any:
        """
        Launch the browser and create the shared context if not done yet.

        Idempotent. Concurrent callers wait on the same lock, so only one
        browser is ever launched.

        Returns:
            The shared Playwright BrowserContext.

        Raises:
            SessionError: Playwright failed to start, launch or create the context.
        """
        async with self._lock:
            if self._context is not None:
                return self._context

            try:
                if self._playwright is None:
                    self._playwright = await self._playwright_factory().start()

                launcher = getattr(self._playwright, self.browser_type.value)
                launch_args = _CHROMIUM_ARGS if self.browser_type is BrowserType.CHROMIUM else []
                self._browser = await launcher.launch(headless=self.headless, args=launch_args)
                self._context = await self._browser.new_context(
                    user_agent=self.user_agent,
                    viewport=self.viewport,
                )
            except PlaywrightError as e:
                logger.error(
                    "browser_session_launch_failed",
                    browser=self.browser_type.value,
                    error=str(e),
                    source="browser_session",
                )
                await self._close_handles()
                raise SessionError(f"Failed to launch {self.browser_type.value}: {e}") from e

            logger.info(
                "browser_session_started",
                browser=self.browser_type.value,
                headless=self.headless,
                source="browser_session",
            )
            return self._context

    async def new_page(self) -> Any:
        """
        Return a fresh page from the shared context, launching it if needed.

        A context that can no longer open pages (browser crashed or
        disconnected) is torn down, so the next call relaunches.
        """
        context = await self.ensure_session()
        try:
            return await context.new_page()
        except PlaywrightError as e:
            logger.error("browser_session_new_page_failed", error=str(e), source="browser_session")
            async with self._lock:
                if self._context is context:
                    await self._close_handles()
            raise SessionError(f"Failed to open page: {e}") from e

    async def shutdown(self) -> None:
        """
        Close context, then browser, then stop Playwright.

        Safe to call when nothing is open. A later ensure_session() relaunches.
        """
        async with self._lock:
            was_open = self._context is not None or self._browser is not None
            await self._close_handles()
            if was_open:
                logger.info("browser_session_closed", source="browser_session")

    async def _close_handles(self) -> None:
        for name in ("_context", "_browser"):
            handle = getattr(self, name)
            setattr(self, name, None)
            if handle is None:
                continue
            try:
                await handle.close()
            except PlaywrightError as e:
                logger.warning(
                    "browser_session_close_failed",
                    handle=name.lstrip("_"),
                    error=str(e),
                    source="browser_session",
                )

        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as e:
                logger.warning(
                    "browser_session_close_failed",
                    handle="playwright",
                    error=str(e),
                    source="browser_session",
                )

    async def __aenter__(self) -> BrowserSession:
        await self.ensure_session()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.shutdown()
