"""
Playwright-backed browser capability (Chromium, async API).
"""

from __future__ import annotations

import logging
from typing import Any

from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from app.crawling.browser.base import BrowserCapability
from app.crawling.errors import AccessBlockedError, BrowserCrashError, CrawlError
from app.crawling.logging_utils import log_event

logger = logging.getLogger(__name__)

DEFAULT_VIEWPORT = {"width": 1280, "height": 800}


class PlaywrightBrowser(BrowserCapability):
    """
    One Chromium process with a single context and page.

    Navigation errors from Playwright propagate unchanged; their messages
    (`net::ERR_*`, `Navigation timeout`, `Target closed`) are what the
    error classifier keys on.
    """

    def __init__(
        self,
        *,
        headless: bool = True,
        locale: str = "pt-BR",
        timeout_ms: int = 30000,
        user_agent: str | None = None,
        viewport: dict[str, int] | None = None,
    ) -> None:
        self.headless = headless
        self.locale = locale
        self.timeout_ms = timeout_ms
        self.user_agent = user_agent
        self.viewport = viewport or DEFAULT_VIEWPORT
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    async def launch(self) -> None:
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.headless)
        self._context = await self._browser.new_context(
            locale=self.locale,
            user_agent=self.user_agent,
            viewport=self.viewport,
        )
        self._page = await self._context.new_page()
        self._page.set_default_timeout(self.timeout_ms)
        log_event(logger, logging.DEBUG, "browser_launched", headless=self.headless, locale=self.locale)

    @property
    def page(self) -> Page:
        if self._page is None:
            raise BrowserCrashError("Target closed: browser page is not available.")
        return self._page

    async def navigate(self, url: str, *, timeout_ms: int | None = None) -> None:
        response = await self.page.goto(
            url,
            wait_until="domcontentloaded",
            timeout=timeout_ms or self.timeout_ms,
        )
        if response is None:
            return
        if response.status == 403:
            raise AccessBlockedError(f"403 Forbidden: {url}", url=url)
        if response.status == 404:
            raise CrawlError(f"404 Not found: {url}", url=url)

    async def content(self) -> str:
        return await self.page.content()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if arg is None:
            return await self.page.evaluate(script)
        return await self.page.evaluate(script, arg)

    async def is_visible(self, selector: str) -> bool:
        return await self.page.is_visible(selector)

    async def click(self, selector: str) -> None:
        await self.page.click(selector)

    async def wait_for(self, milliseconds: int) -> None:
        await self.page.wait_for_timeout(milliseconds)

    async def screenshot(self, path: str) -> None:
        await self.page.screenshot(path=path, full_page=True)

    async def current_url(self) -> str:
        return self.page.url

    async def title(self) -> str:
        return await self.page.title()

    async def close(self) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None

    def is_alive(self) -> bool:
        return self._browser is not None and self._browser.is_connected()
