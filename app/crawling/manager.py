"""
Crawling manager: task ingress, crawl entry points, persistence and stats.

Every entry point can be called directly or submitted as a scheduled task.
Direct calls update the request counters, publish a completion event on
success and an `error` event on failure before re-raising.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from app.checkout.descriptor import CheckoutProcessDescriptor
from app.checkout.process_store import CheckoutProcessStore
from app.crawling import events
from app.crawling.browser.base import BrowserPool
from app.crawling.config.models import SiteConfig
from app.crawling.crawlers import (
    CategoryCrawler,
    CheckoutAnalyzer,
    ProductCrawler,
    SearchCrawler,
    slugify,
)
from app.crawling.crawlers.base import product_id_from_url, utc_timestamp
from app.crawling.error_classifier import ErrorClassifier
from app.crawling.errors import ValidationError
from app.crawling.events import EventBus
from app.crawling.logging_utils import error_fields, log_event
from app.crawling.storage.base import DocumentStorage
from app.crawling.task_scheduler import TaskScheduler
from app.crawling.types import CrawlTask, TaskKind
from app.extraction.dom_fallback import DomFallbackExtractor
from app.extraction.pipeline import ContentExtractionPipeline
from app.extraction.types import ExtractionOptions
from db.models.crawl_document import CrawlDocumentKind

logger = logging.getLogger(__name__)

ALL_CATEGORIES_KEY = "all_categories"
DEFAULT_CATEGORY = "default"

# `error` event types, one per entry point.
ERROR_CATEGORY = "category"
ERROR_PRODUCT = "product"
ERROR_MULTIPLE_PRODUCTS = "multipleProducts"
ERROR_CHECKOUT = "checkout"
ERROR_SEARCH = "search"
ERROR_UPDATE = "update"
ERROR_ALL_CATEGORIES = "allCategories"


@dataclass
class CrawlStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    start_time: datetime | None = None
    end_time: datetime | None = None


class CrawlingManager:
    """
    Coordinates crawlers, the task scheduler and document persistence.
    """

    def __init__(
        self,
        *,
        pool: BrowserPool,
        pipeline: ContentExtractionPipeline,
        site_config: SiteConfig,
        storage: DocumentStorage,
        process_store: CheckoutProcessStore | None = None,
        classifier: ErrorClassifier | None = None,
        event_bus: EventBus | None = None,
        extraction_options: ExtractionOptions | None = None,
        max_active_tasks: int = 10,
        max_retries: int = 3,
        retry_initial_seconds: float = 1.0,
        retry_max_seconds: float = 30.0,
        max_concurrency: int = 3,
        max_products_per_category: int = 30,
        max_pages: int = 3,
        page_settle_ms: int = 2000,
        batch_delay_seconds: float = 3.0,
        category_delay_seconds: float = 5.0,
        checkout_max_depth: int = 3,
        screenshot_dir: str | None = None,
        history_size: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.pool = pool
        self.storage = storage
        self.site_config = site_config
        self.process_store = process_store or CheckoutProcessStore(storage=storage)
        self.events = event_bus or EventBus()
        self.max_concurrency = max(1, max_concurrency)
        self.batch_delay_seconds = max(0.0, batch_delay_seconds)
        self.category_delay_seconds = max(0.0, category_delay_seconds)
        self._sleep = sleep

        dom_extractor = pipeline.dom_extractor or DomFallbackExtractor(site_config=site_config)
        shared: dict[str, Any] = {
            "pool": pool,
            "pipeline": pipeline,
            "site_config": site_config,
            "extraction_options": extraction_options,
            "page_settle_ms": page_settle_ms,
            "sleep": sleep,
        }
        self.category_crawler = CategoryCrawler(
            max_products=max_products_per_category,
            max_pages=max_pages,
            **shared,
        )
        self.product_crawler = ProductCrawler(
            dom_extractor=dom_extractor,
            batch_delay_seconds=batch_delay_seconds,
            **shared,
        )
        self.search_crawler = SearchCrawler(**shared)
        self.checkout_analyzer = CheckoutAnalyzer(
            dom_extractor=dom_extractor,
            max_depth=checkout_max_depth,
            screenshot_dir=screenshot_dir,
            **shared,
        )

        # Task concurrency cannot exceed the sessions the pool can hold open.
        active_tasks = min(max(1, max_active_tasks), pool.capacity)
        if active_tasks < max_active_tasks:
            log_event(
                logger,
                logging.INFO,
                "max_active_tasks_clamped",
                requested=max_active_tasks,
                page_capacity=pool.page_capacity,
                browser_capacity=pool.browser_capacity,
            )
        self.scheduler = TaskScheduler(
            classifier=classifier or ErrorClassifier(max_retry_attempts=max_retries),
            event_bus=self.events,
            max_active_tasks=active_tasks,
            max_retries=max_retries,
            retry_initial_seconds=retry_initial_seconds,
            retry_max_seconds=retry_max_seconds,
            history_size=history_size,
            on_browser_restart=self._restart_browsers,
            sleep=sleep,
        )
        self._register_handlers()
        self._stats = CrawlStats()
        self._clock_started: float | None = None
        self._clock_ended: float | None = None

    # ------------------------------------------------------------------
    # Lifecycle and queue controls
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        await self.pool.close()

    def submit_task(
        self,
        kind: TaskKind | str | None,
        payload: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
        priority: int | None = None,
    ) -> str:
        return self.scheduler.submit(kind, payload, options, priority)

    def pause_queue(self) -> None:
        self.scheduler.pause()

    def resume_queue(self) -> None:
        self.scheduler.resume()

    def clear_queue(self) -> int:
        return self.scheduler.clear()

    def get_stats(self) -> dict[str, Any]:
        stats = asdict(self._stats)
        for key in ("start_time", "end_time"):
            stats[key] = stats[key].isoformat() if stats[key] is not None else None
        if self._clock_started is None:
            elapsed = 0.0
        else:
            elapsed = (self._clock_ended or time.monotonic()) - self._clock_started
        queue = self.scheduler.stats()
        stats.update(
            {
                "elapsed_seconds": round(elapsed, 3),
                "retries": queue.retried,
                "queue": queue.to_dict(),
                "open_sessions": self.pool.open_sessions,
                "browser_restarts": self.pool.restarts,
            }
        )
        return stats

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def crawl_category(self, category: dict[str, Any], options: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        options = options or {}
        async with self._tracked(ERROR_CATEGORY, category=category):
            products = await self.category_crawler.crawl_category(category, options)
            if options.get("save_data", True):
                self.save_category_data(category, products)
        self.events.emit(events.CATEGORY_CRAWLED, category=category, products=products)
        return products

    async def crawl_product_details(
        self,
        product: str | dict[str, Any],
        category: str = DEFAULT_CATEGORY,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        options = options or {}
        async with self._tracked(ERROR_PRODUCT, product=product, category=category):
            result = await self.product_crawler.crawl_product_details(product, category, options)
            if options.get("save_data", True):
                self.save_product_data(result)
        self.events.emit(events.PRODUCT_CRAWLED, product=result)
        return result

    async def crawl_multiple_products(
        self,
        products: list[str | dict[str, Any]],
        category: str = DEFAULT_CATEGORY,
        options: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        options = {"concurrency": self.max_concurrency, **(options or {})}
        async with self._tracked(ERROR_MULTIPLE_PRODUCTS, count=len(products or []), category=category):
            results = await self.product_crawler.crawl_multiple_products(products, category, options)
            if options.get("save_data", True):
                for result in results:
                    if "crawling_error" not in result:
                        self.save_product_data(result)
        self.events.emit(events.MULTIPLE_CRAWLED, products=results)
        return results

    async def crawl_checkout_process(
        self,
        product_url: str,
        options: dict[str, Any] | None = None,
    ) -> CheckoutProcessDescriptor:
        options = options or {}
        async with self._tracked(ERROR_CHECKOUT, url=product_url):
            descriptor = await self.checkout_analyzer.analyze(product_url, options)
            self.process_store.save(descriptor.product_id, descriptor)
        self.events.emit(
            events.CHECKOUT_CRAWLED,
            url=product_url,
            product_id=descriptor.product_id,
            descriptor=descriptor,
        )
        return descriptor

    async def crawl_search_results(self, query: str, options: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """
        Crawl search results; with `crawl_details` each result is crawled as a product too.
        """

        options = options or {}
        async with self._tracked(ERROR_SEARCH, query=query):
            results = await self.search_crawler.crawl_search_results(query, options)
            if options.get("save_data", True):
                self.save_search_results(query, results)
        self.events.emit(events.SEARCH_CRAWLED, query=query, results=results)

        if options.get("crawl_details") and results:
            detail_options = {key: value for key, value in options.items() if key != "crawl_details"}
            return await self.crawl_multiple_products(results, DEFAULT_CATEGORY, detail_options)
        return results

    async def update_products_info(
        self,
        products: list[dict[str, Any]],
        category: str = DEFAULT_CATEGORY,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Refresh price and availability for known products in batches.
        """

        options = options or {}
        if not products:
            return {"updated": 0, "unchanged": 0, "errors": 0, "updated_products": []}

        concurrency = max(1, int(options.get("concurrency") or self.max_concurrency))
        updated: list[dict[str, Any]] = []
        unchanged = 0
        errors = 0
        async with self._tracked(ERROR_UPDATE, count=len(products), category=category):
            batches = _batches(products, concurrency)
            for position, batch in enumerate(batches):
                outcomes = await asyncio.gather(
                    *(self.product_crawler.update_product_info(product, category) for product in batch)
                )
                for outcome in outcomes:
                    if outcome.get("error"):
                        errors += 1
                    elif outcome.get("updated"):
                        updated.append(outcome["product"])
                        self.save_product_data(outcome["product"])
                    else:
                        unchanged += 1
                if position < len(batches) - 1 and self.batch_delay_seconds:
                    await self._sleep(self.batch_delay_seconds)

        self.events.emit(
            events.PRODUCTS_UPDATED,
            updated=len(updated),
            unchanged=unchanged,
            errors=errors,
            products=updated,
        )
        return {"updated": len(updated), "unchanged": unchanged, "errors": errors, "updated_products": updated}

    async def crawl_all_categories(
        self,
        categories: list[dict[str, Any]],
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Crawl every category, sequentially or in parallel batches with a pause between.
        """

        options = options or {}
        async with self._tracked(ERROR_ALL_CATEGORIES, count=len(categories or [])):
            if not categories:
                raise ValidationError("Categories are required")

            size = 1
            if options.get("parallel"):
                size = max(1, int(options.get("concurrency") or min(3, self.max_concurrency, len(categories))))
            batches = _batches(categories, size)

            results: dict[str, list[dict[str, Any]]] = {}
            errors: list[dict[str, Any]] = []
            for position, batch in enumerate(batches):
                outcomes = await asyncio.gather(
                    *(self.crawl_category(category, options) for category in batch),
                    return_exceptions=True,
                )
                for category, outcome in zip(batch, outcomes):
                    name = _category_name(category)
                    if isinstance(outcome, BaseException):
                        errors.append({"category": name, "error": str(outcome) or outcome.__class__.__name__})
                    else:
                        results[name] = outcome
                if position < len(batches) - 1 and self.category_delay_seconds:
                    await self._sleep(self.category_delay_seconds)

            self.save_all_categories_data(results)

        self.events.emit(events.ALL_CATEGORIES_CRAWLED, results=results, errors=errors)
        return {
            "results": results,
            "errors": errors,
            "total_categories": len(categories),
            "successful_categories": len(results),
            "failed_categories": len(errors),
            "timestamp": utc_timestamp(),
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save_category_data(self, category: dict[str, Any], products: list[dict[str, Any]]) -> None:
        key = str(category.get("id") or slugify(_category_name(category)))
        self._save(
            CrawlDocumentKind.CATEGORY,
            key,
            {"category": category, "products": products, "timestamp": utc_timestamp()},
        )

    def save_product_data(self, product: dict[str, Any]) -> None:
        if not product.get("url"):
            return
        key = str(product.get("id") or slugify(product.get("title") or "") or product_id_from_url(product["url"]))
        self._save(CrawlDocumentKind.PRODUCT, key, {**product, "last_updated": utc_timestamp()})

    def save_search_results(self, query: str, results: list[dict[str, Any]]) -> None:
        self._save(
            CrawlDocumentKind.SEARCH,
            slugify(query),
            {"query": query, "results": results, "timestamp": utc_timestamp()},
        )

    def save_all_categories_data(self, results: dict[str, list[dict[str, Any]]]) -> None:
        self._save(
            CrawlDocumentKind.BATCH,
            ALL_CATEGORIES_KEY,
            {"categories": results, "timestamp": utc_timestamp()},
        )

    def _save(self, kind: str, key: str, payload: dict[str, Any]) -> None:
        try:
            self.storage.save(kind, key, payload)
        except Exception as exc:
            log_event(logger, logging.ERROR, "crawl_document_persist_failed", kind=kind, key=key, **error_fields(exc))
            return
        log_event(logger, logging.DEBUG, "crawl_document_saved", kind=kind, key=key)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _tracked(self, error_type: str, **context: Any) -> AsyncIterator[None]:
        self._stats.total_requests += 1
        if self._stats.start_time is None:
            self._stats.start_time = datetime.now(timezone.utc)
            self._clock_started = time.monotonic()
        try:
            yield
        except Exception as exc:
            self._stats.failed_requests += 1
            self._mark_end()
            log_event(logger, logging.ERROR, "crawl_request_failed", type=error_type, **error_fields(exc))
            self.events.emit(events.ERROR, type=error_type, error=str(exc) or exc.__class__.__name__, **context)
            raise
        self._stats.successful_requests += 1
        self._mark_end()

    def _mark_end(self) -> None:
        self._stats.end_time = datetime.now(timezone.utc)
        self._clock_ended = time.monotonic()

    async def _restart_browsers(self) -> None:
        await self.pool.restart()

    def _register_handlers(self) -> None:
        self.scheduler.register_handler(TaskKind.CATEGORY, self._handle_category)
        self.scheduler.register_handler(TaskKind.PRODUCT, self._handle_product)
        self.scheduler.register_handler(TaskKind.SEARCH, self._handle_search)
        self.scheduler.register_handler(TaskKind.CHECKOUT, self._handle_checkout)
        self.scheduler.register_handler(TaskKind.UPDATE, self._handle_update)
        self.scheduler.register_handler(TaskKind.BATCH, self._handle_batch)

    async def _handle_category(self, task: CrawlTask) -> Any:
        return await self.crawl_category(task.payload.get("category") or task.payload, task.options)

    async def _handle_product(self, task: CrawlTask) -> Any:
        category = task.options.get("category") or DEFAULT_CATEGORY
        return await self.crawl_product_details(task.payload.get("product") or task.payload, category, task.options)

    async def _handle_search(self, task: CrawlTask) -> Any:
        return await self.crawl_search_results(str(task.payload.get("query") or ""), task.options)

    async def _handle_checkout(self, task: CrawlTask) -> Any:
        descriptor = await self.crawl_checkout_process(str(task.payload.get("url") or ""), task.options)
        return descriptor.model_dump(mode="json")

    async def _handle_update(self, task: CrawlTask) -> Any:
        category = task.options.get("category") or DEFAULT_CATEGORY
        return await self.update_products_info(list(task.payload.get("products") or []), category, task.options)

    async def _handle_batch(self, task: CrawlTask) -> Any:
        return await self.crawl_all_categories(list(task.payload.get("categories") or []), task.options)


def _batches(items: list[Any], size: int) -> list[list[Any]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


def _category_name(category: dict[str, Any]) -> str:
    return str(category.get("name") or category.get("id") or category.get("url") or "category")
