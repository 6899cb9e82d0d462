"""
Shared plumbing for site crawlers: pool sessions, page extraction and
selector probing against a live browser.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import re
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any
from urllib.parse import parse_qs, urljoin, urlsplit

from app.crawling.browser.base import BrowserCapability, BrowserPool
from app.crawling.config.models import SiteConfig
from app.crawling.logging_utils import error_fields, log_event
from app.extraction.pipeline import ContentExtractionPipeline
from app.extraction.types import ExtractionDocument, ExtractionOptions

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_ID = "default"
_PRODUCT_ID_PARAMS = ("id", "productId", "product_id")
_SLUG_STRIP = re.compile(r"[^\w\s-]")
_SLUG_COLLAPSE = re.compile(r"[\s_-]+")
SLUG_MAX_LENGTH = 50


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def slugify(text: str) -> str:
    """
    Lowercase, drop punctuation, collapse separators to `-`, trim, cap at 50 chars.
    """

    slug = _SLUG_STRIP.sub("", (text or "").lower().strip())
    slug = _SLUG_COLLAPSE.sub("-", slug).strip("-")
    return slug[:SLUG_MAX_LENGTH]


def product_id_from_url(url: str | None) -> str:
    """
    Product id from an `id`/`productId`/`product_id` query parameter, else
    the last path segment without its extension, else `default`.
    """

    if not url:
        return DEFAULT_PRODUCT_ID
    try:
        parts = urlsplit(url)
    except ValueError:
        return DEFAULT_PRODUCT_ID

    query = parse_qs(parts.query)
    for param in _PRODUCT_ID_PARAMS:
        values = query.get(param)
        if values and values[0]:
            return values[0]

    segments = [segment for segment in parts.path.split("/") if segment]
    if segments:
        stem = PurePosixPath(segments[-1]).stem
        if stem:
            return stem
    return DEFAULT_PRODUCT_ID


class CrawlerBase:
    """
    Base class for crawlers that drive one pooled browser per crawl.
    """

    def __init__(
        self,
        *,
        pool: BrowserPool,
        pipeline: ContentExtractionPipeline,
        site_config: SiteConfig,
        extraction_options: ExtractionOptions | None = None,
        page_settle_ms: int = 2000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.pool = pool
        self.pipeline = pipeline
        self.site_config = site_config
        self.extraction_options = extraction_options or ExtractionOptions()
        self.page_settle_ms = max(0, page_settle_ms)
        self._sleep = sleep

    def options_for(self, dom_target: str) -> ExtractionOptions:
        return dataclasses.replace(self.extraction_options, dom_target=dom_target)

    async def extract_page(
        self,
        browser: BrowserCapability,
        goal: str,
        *,
        dom_target: str,
        category: str | None = None,
    ) -> ExtractionDocument:
        markup = await browser.content()
        page_url = await browser.current_url()
        return await self.pipeline.extract(
            markup,
            goal,
            self.options_for(dom_target),
            category=category,
            base_url=page_url or self.site_config.base_url,
        )

    async def settle(self, browser: BrowserCapability) -> None:
        if self.page_settle_ms:
            await browser.wait_for(self.page_settle_ms)

    @staticmethod
    async def first_visible(browser: BrowserCapability, selectors: tuple[str, ...]) -> str | None:
        """
        First selector that resolves to a visible element on the current page.

        Selector syntax a browser cannot evaluate counts as not visible.
        """

        for selector in selectors:
            try:
                if await browser.is_visible(selector):
                    return selector
            except Exception as exc:
                log_event(logger, logging.DEBUG, "selector_probe_failed", selector=selector, **error_fields(exc))
        return None

    @staticmethod
    def absolutize(items: list[dict[str, Any]], *, base_url: str, keys: tuple[str, ...] = ("url", "image_url")) -> None:
        for item in items:
            for key in keys:
                value = item.get(key)
                if isinstance(value, str) and value and not value.startswith(("http://", "https://", "data:")):
                    item[key] = urljoin(base_url, value)
