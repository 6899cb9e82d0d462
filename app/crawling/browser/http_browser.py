"""
HTTP-only browser capability for server-rendered pages.

Fetches with `requests` in a worker thread, spaces requests per domain with
the shared rate limiter, and answers selector queries with BeautifulSoup.
Clicks are only supported on links.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

import requests
from bs4 import BeautifulSoup

from app.crawling.browser.base import BrowserCapability
from app.crawling.errors import (
    AccessBlockedError,
    CrawlError,
    StructuralMismatchError,
    TransientNetworkError,
)
from app.crawling.logging_utils import log_event
from app.crawling.rate_limiter import DomainRateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_BROWSER_ONLY_PSEUDO = ":has-text("


class HttpBrowser(BrowserCapability):
    def __init__(
        self,
        *,
        rate_limiter: DomainRateLimiter,
        session: requests.Session | None = None,
        user_agent: str = "Mozilla/5.0 (compatible; RetailCrawler/1.0)",
        timeout_seconds: float = 30.0,
        max_retries: int = 2,
        backoff_initial_seconds: float = 0.5,
        backoff_multiplier: float = 2.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.session = session
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(0, max_retries)
        self.backoff_initial_seconds = backoff_initial_seconds
        self.backoff_multiplier = backoff_multiplier
        self.request_headers = {"User-Agent": user_agent, **(headers or {})}
        self._owns_session = session is None
        self._url = ""
        self._markup = ""
        self._soup: BeautifulSoup | None = None

    async def launch(self) -> None:
        if self.session is None:
            self.session = requests.Session()

    async def navigate(self, url: str, *, timeout_ms: int | None = None) -> None:
        await self.rate_limiter.wait(url=url)
        timeout = timeout_ms / 1000.0 if timeout_ms else self.timeout_seconds
        response = await asyncio.to_thread(self._request_with_retry, url, timeout)
        self._url = response.url or url
        self._markup = response.text
        self._soup = BeautifulSoup(self._markup, "html.parser")
        log_event(logger, logging.DEBUG, "page_fetched", url=self._url, status=response.status_code)

    async def content(self) -> str:
        return self._markup

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        raise StructuralMismatchError("Script evaluation needs a real browser.", url=self._url)

    async def is_visible(self, selector: str) -> bool:
        if self._soup is None or _BROWSER_ONLY_PSEUDO in selector:
            return False
        return self._soup.select_one(selector) is not None

    async def click(self, selector: str) -> None:
        node = None
        if self._soup is not None and _BROWSER_ONLY_PSEUDO not in selector:
            node = self._soup.select_one(selector)
        href = node.get("href") if node is not None else None
        if not href:
            raise StructuralMismatchError(
                f"No followable link for selector {selector!r}.",
                url=self._url,
                selector=selector,
            )
        await self.navigate(urljoin(self._url, str(href)))

    async def wait_for(self, milliseconds: int) -> None:
        await asyncio.sleep(milliseconds / 1000.0)

    async def screenshot(self, path: str) -> None:
        # No rendering engine; store the fetched markup instead.
        await asyncio.to_thread(Path(path).write_text, self._markup, encoding="utf-8")

    async def current_url(self) -> str:
        return self._url

    async def title(self) -> str:
        if self._soup is None or self._soup.title is None:
            return ""
        return self._soup.title.get_text(" ", strip=True)

    async def close(self) -> None:
        if self.session is not None and self._owns_session:
            self.session.close()
            self.session = None
        self._soup = None

    def _request_with_retry(self, url: str, timeout: float) -> requests.Response:
        if self.session is None:
            raise CrawlError("Target closed: HTTP session is not launched.", url=url)

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                response = self.session.get(
                    url,
                    headers=self.request_headers,
                    timeout=timeout,
                    allow_redirects=True,
                )
            except (requests.Timeout, requests.ConnectionError) as exc:
                last_error = exc
            else:
                if response.status_code == 403:
                    raise AccessBlockedError(f"403 Forbidden: {url}", url=url)
                if response.status_code == 404:
                    raise CrawlError(f"404 Not found: {url}", url=url)
                if response.status_code not in RETRYABLE_STATUS_CODES:
                    response.raise_for_status()
                    return response
                last_error = requests.HTTPError(f"Retryable status={response.status_code}", response=response)

            if attempt >= self.max_retries:
                break
            time.sleep(self.backoff_initial_seconds * (self.backoff_multiplier**attempt))

        raise TransientNetworkError(f"Failed to fetch {url} after retries: {last_error}", url=url)
