"""
Category listing crawler with pagination.
"""

from __future__ import annotations

import logging
from typing import Any

from app.crawling.crawlers.base import CrawlerBase, utc_timestamp
from app.crawling.errors import ValidationError
from app.crawling.logging_utils import log_event
from app.extraction.types import METHOD_DOM, METHOD_LLM

logger = logging.getLogger(__name__)

DEFAULT_PRODUCT_LIMIT = 30
DEFAULT_MAX_PAGES = 3
LISTING_TARGET = "listing"


class CategoryCrawler(CrawlerBase):
    def __init__(
        self,
        *,
        max_products: int = DEFAULT_PRODUCT_LIMIT,
        max_pages: int = DEFAULT_MAX_PAGES,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.max_products = max(1, max_products)
        self.max_pages = max(1, max_pages)

    async def crawl_category(
        self,
        category: dict[str, Any],
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Collect product cards from a category listing, following `next` links.

        Stops at `max_pages` pages or once `limit` products were seen.
        """

        options = options or {}
        url = category.get("url")
        if not url:
            raise ValidationError("Category URL is required")

        limit = int(options.get("limit") or self.max_products)
        max_pages = int(options.get("max_pages") or self.max_pages)
        category_type = category.get("type") or category.get("id")
        log_event(logger, logging.INFO, "category_crawl_started", url=url, limit=limit, max_pages=max_pages)

        products: list[dict[str, Any]] = []
        async with self.pool.session() as browser:
            await browser.navigate(url)
            page = 1
            while True:
                products.extend(await self.extract_listing(browser, category_type))
                if page >= max_pages or len(products) >= limit:
                    break
                next_selector = await self.first_visible(browser, self.site_config.navigation.next_page)
                if next_selector is None:
                    break
                await browser.click(next_selector)
                await self.settle(browser)
                page += 1

        limited = products[:limit]
        log_event(
            logger,
            logging.INFO,
            "category_crawl_completed",
            url=url,
            pages=page,
            products=len(limited),
        )
        return limited

    async def extract_listing(self, browser: Any, category_type: str | None) -> list[dict[str, Any]]:
        document = await self.extract_page(
            browser,
            self.site_config.goal_for(LISTING_TARGET),
            dom_target=LISTING_TARGET,
            category=category_type,
        )
        data = document.data if isinstance(document.data, dict) else {}
        items = data.get("products")
        if not isinstance(items, list):
            return []

        page_url = await browser.current_url()
        found_at = utc_timestamp()
        products: list[dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            product = dict(item)
            # DOM probe items arrive tagged; anything else came from the completion path.
            product.setdefault("extraction_method", METHOD_LLM if document.method != METHOD_DOM else METHOD_DOM)
            product.setdefault("crawled_at", found_at)
            products.append(product)
        self.absolutize(products, base_url=page_url or self.site_config.base_url)
        return products
