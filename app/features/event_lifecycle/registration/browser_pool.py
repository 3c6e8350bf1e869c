"""
Playwright browser pool with scoped page acquisition.

One Chromium instance per process; each registration attempt gets a fresh
context and page that are closed on every exit path.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, Page, Playwright, async_playwright

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)


class BrowserPool:
    def __init__(self, max_pages: int | None = None, headless: bool | None = None):
        self.max_pages = max_pages or settings.BROWSER_MAX_PAGES
        self.headless = settings.BROWSER_HEADLESS if headless is None else headless
        self._semaphore = asyncio.Semaphore(self.max_pages)
        self._start_lock = asyncio.Lock()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._active_pages = 0

    @property
    def started(self) -> bool:
        return self._browser is not None and self._browser.is_connected()

    async def start(self) -> None:
        async with self._start_lock:
            if self.started:
                return
            logger.info("Launching browser", headless=self.headless)
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(headless=self.headless)

    async def close(self) -> None:
        async with self._start_lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.warning("Error closing browser", error=str(e))
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            logger.info("Browser pool closed")

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """
        Acquire a page for one registration attempt.

        Usage:
            async with pool.page() as page:
                await page.goto(url)
        """
        async with self._semaphore:
            if not self.started:
                await self.start()

            context = await self._browser.new_context(
                user_agent=USER_AGENT, viewport={"width": 1280, "height": 900}
            )
            self._active_pages += 1
            try:
                page = await context.new_page()
                page.set_default_timeout(settings.NAVIGATION_TIMEOUT_MS)
                yield page
            finally:
                self._active_pages -= 1
                try:
                    await context.close()
                except Exception as e:
                    logger.warning("Error closing browser context", error=str(e))

    def health_check(self) -> dict[str, Any]:
        return {
            "healthy": True,
            "service": "browser_pool",
            "started": self.started,
            "active_pages": self._active_pages,
            "max_pages": self.max_pages,
        }
