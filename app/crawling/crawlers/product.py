"""
Product detail crawler.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Union

from app.crawling.crawlers.base import CrawlerBase, product_id_from_url, utc_timestamp
from app.crawling.errors import StructuralMismatchError, ValidationError
from app.crawling.logging_utils import error_fields, log_event
from app.extraction.dom_fallback import DomFallbackExtractor

logger = logging.getLogger(__name__)

PRODUCT_TARGET = "product"
DEFAULT_CONCURRENCY = 3
DEFAULT_BATCH_DELAY_SECONDS = 3.0

ProductRef = Union[str, dict[str, Any]]


def _as_product(product: ProductRef) -> dict[str, Any]:
    if isinstance(product, str):
        return {"url": product}
    return dict(product)


class ProductCrawler(CrawlerBase):
    def __init__(
        self,
        *,
        dom_extractor: DomFallbackExtractor | None = None,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self.dom_extractor = dom_extractor or DomFallbackExtractor(site_config=self.site_config)
        self.batch_delay_seconds = max(0.0, batch_delay_seconds)

    async def crawl_product_details(
        self,
        product: ProductRef,
        category: str = "default",
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Visit one product page and merge the extracted document over the input.

        Raises:
            ValidationError: If no product URL was given.
            StructuralMismatchError: If neither extraction path produced data.
        """

        base = _as_product(product)
        url = base.get("url")
        if not url:
            raise ValidationError("Product URL is required")

        log_event(logger, logging.INFO, "product_crawl_started", url=url, category=category)
        async with self.pool.session() as browser:
            await browser.navigate(url)
            document = await self.extract_page(
                browser,
                self.site_config.goal_for(category),
                dom_target=PRODUCT_TARGET,
                category=category,
            )

        if document.error is not None:
            raise StructuralMismatchError(f"No product data extracted: {document.error}", url=url)

        result = {**base, **document.to_dict()}
        result["url"] = url
        result.setdefault("id", base.get("id") or product_id_from_url(url))
        result["category"] = base.get("category") or category
        result["last_updated"] = utc_timestamp()
        log_event(
            logger,
            logging.INFO,
            "product_crawl_completed",
            url=url,
            method=document.method,
            chunk_count=document.chunk_count,
            failed_chunks=document.failed_chunks,
        )
        return result

    async def crawl_multiple_products(
        self,
        products: list[ProductRef],
        category: str = "default",
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Crawl products in concurrent batches; failures are kept with `crawling_error`.
        """

        options = options or {}
        if not products:
            return []
        concurrency = max(1, int(options.get("concurrency") or DEFAULT_CONCURRENCY))
        batches = [products[start : start + concurrency] for start in range(0, len(products), concurrency)]

        results: list[dict[str, Any]] = []
        for position, batch in enumerate(batches):
            log_event(
                logger,
                logging.INFO,
                "product_batch_started",
                batch=position + 1,
                batches=len(batches),
                size=len(batch),
            )
            outcomes = await asyncio.gather(
                *(self.crawl_product_details(item, category, options) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    failed = _as_product(item)
                    log_event(
                        logger,
                        logging.WARNING,
                        "product_crawl_failed",
                        url=failed.get("url"),
                        **error_fields(outcome),
                    )
                    failed["crawling_error"] = str(outcome) or outcome.__class__.__name__
                    failed["last_updated"] = utc_timestamp()
                    results.append(failed)
                else:
                    results.append(outcome)

            if position < len(batches) - 1 and self.batch_delay_seconds:
                await self._sleep(self.batch_delay_seconds)
        return results

    async def update_product_info(self, product: dict[str, Any], category: str = "default") -> dict[str, Any]:
        """
        Re-read price and availability; returns `{updated, product?, error?}`.
        """

        url = product.get("url") if isinstance(product, dict) else None
        if not url:
            return {"updated": False, "error": "No URL provided"}

        try:
            async with self.pool.session() as browser:
                await browser.navigate(url)
                markup = await browser.content()
            fresh = self.dom_extractor.extract(markup, target=PRODUCT_TARGET, category=category, base_url=url)
        except Exception as exc:
            log_event(logger, logging.ERROR, "product_update_failed", url=url, **error_fields(exc))
            return {"updated": False, "error": str(exc) or exc.__class__.__name__}

        changes: dict[str, dict[str, Any]] = {}
        for key in ("price", "availability"):
            value = fresh.get(key)
            if value is not None and value != product.get(key):
                changes[key] = {"old": product.get(key), "new": value}

        if not changes:
            return {"updated": False}

        updated = dict(product)
        for key, change in changes.items():
            updated[key] = change["new"]
        updated["last_updated"] = utc_timestamp()
        log_event(logger, logging.INFO, "product_info_changed", url=url, changes=changes)
        return {"updated": True, "product": updated}
