"""
Site search results crawler.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote_plus

from app.crawling.crawlers.base import CrawlerBase, utc_timestamp
from app.crawling.errors import ValidationError
from app.crawling.logging_utils import log_event
from app.extraction.types import METHOD_DOM, METHOD_LLM

logger = logging.getLogger(__name__)

SEARCH_TARGET = "search"
DEFAULT_SEARCH_LIMIT = 20


class SearchCrawler(CrawlerBase):
    def search_url(self, query: str) -> str:
        return self.site_config.search_url.replace("{query}", quote_plus(query))

    def search_goal(self, query: str) -> str:
        return self.site_config.goal_for(SEARCH_TARGET).replace("{query}", query)

    async def crawl_search_results(
        self,
        query: str,
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Run a site search and return up to `limit` results that carry a URL.
        """

        options = options or {}
        query = (query or "").strip()
        if not query:
            raise ValidationError("Search query is required")
        limit = max(1, int(options.get("limit") or DEFAULT_SEARCH_LIMIT))

        url = self.search_url(query)
        async with self.pool.session() as browser:
            await browser.navigate(url)
            document = await self.extract_page(browser, self.search_goal(query), dom_target=SEARCH_TARGET)
            page_url = await browser.current_url()

        data = document.data if isinstance(document.data, dict) else {}
        items = data.get("products") if isinstance(data.get("products"), list) else []
        method = METHOD_DOM if document.method == METHOD_DOM else METHOD_LLM
        found_at = utc_timestamp()

        results: list[dict[str, Any]] = []
        for item in items:
            if not isinstance(item, dict) or not item.get("url"):
                continue
            result = dict(item)
            result.setdefault("extraction_method", method)
            result["query"] = query
            result.setdefault("crawled_at", found_at)
            results.append(result)
            if len(results) >= limit:
                break

        self.absolutize(results, base_url=page_url or url)
        log_event(logger, logging.INFO, "search_crawl_completed", query=query, results=len(results))
        return results
