"""
Browser-automation capability contract and the bounded pool that hands it out.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from app.crawling.logging_utils import error_fields, log_event

logger = logging.getLogger(__name__)


class BrowserCapability(ABC):
    """
    The action surface crawlers rely on. One instance drives one page.
    """

    @abstractmethod
    async def launch(self) -> None:
        """Start the underlying browser or HTTP session."""

    @abstractmethod
    async def navigate(self, url: str, *, timeout_ms: int | None = None) -> None:
        """Load `url`. Raises on navigation failure."""

    @abstractmethod
    async def content(self) -> str:
        """Current page markup."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Run a script in the page and return its result."""

    @abstractmethod
    async def is_visible(self, selector: str) -> bool:
        ...

    @abstractmethod
    async def click(self, selector: str) -> None:
        ...

    @abstractmethod
    async def wait_for(self, milliseconds: int) -> None:
        ...

    @abstractmethod
    async def screenshot(self, path: str) -> None:
        ...

    @abstractmethod
    async def current_url(self) -> str:
        ...

    @abstractmethod
    async def title(self) -> str:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def is_alive(self) -> bool:
        return True


BrowserFactory = Callable[[], BrowserCapability]


class BrowserPool:
    """
    Caps concurrent pages and concurrently open browsers.

    Every session owns one browser for its whole life, so at most
    `capacity` sessions are open at once; the manager clamps task
    concurrency to it.
    """

    def __init__(
        self,
        *,
        factory: BrowserFactory,
        max_concurrent_browsers: int = 5,
        max_concurrent_pages: int = 10,
    ) -> None:
        self._factory = factory
        self._max_concurrent_browsers = max(1, max_concurrent_browsers)
        self._max_concurrent_pages = max(1, max_concurrent_pages)
        self._browser_slots = asyncio.Semaphore(self._max_concurrent_browsers)
        self._page_slots = asyncio.Semaphore(self._max_concurrent_pages)
        self._open: set[BrowserCapability] = set()
        self._restarts = 0

    @property
    def page_capacity(self) -> int:
        return self._max_concurrent_pages

    @property
    def browser_capacity(self) -> int:
        return self._max_concurrent_browsers

    @property
    def capacity(self) -> int:
        return min(self._max_concurrent_pages, self._max_concurrent_browsers)

    @property
    def open_sessions(self) -> int:
        return len(self._open)

    @property
    def restarts(self) -> int:
        return self._restarts

    @asynccontextmanager
    async def session(self) -> AsyncIterator[BrowserCapability]:
        """
        Hold a page slot and a browser slot until the session exits.
        """

        async with self._page_slots, self._browser_slots:
            browser = self._factory()
            try:
                await browser.launch()
                self._open.add(browser)
                yield browser
            finally:
                self._open.discard(browser)
                await self._close_quietly(browser)

    async def restart(self) -> int:
        """
        Close sessions whose browser is no longer alive; returns how many were closed.
        """

        dead = [browser for browser in self._open if not browser.is_alive()]
        for browser in dead:
            self._open.discard(browser)
            await self._close_quietly(browser)
        self._restarts += 1
        log_event(logger, logging.WARNING, "browser_pool_restarted", closed=len(dead), restarts=self._restarts)
        return len(dead)

    async def close(self) -> None:
        for browser in list(self._open):
            self._open.discard(browser)
            await self._close_quietly(browser)

    @staticmethod
    async def _close_quietly(browser: BrowserCapability) -> None:
        try:
            await browser.close()
        except Exception as exc:
            log_event(logger, logging.WARNING, "browser_close_failed", **error_fields(exc))
