"""
Runtime assembly: storage, extraction pipeline, browser pool, crawling
manager and checkout session engine built from environment settings.

Without a configured database, documents and cache entries live in memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.checkout.process_store import CheckoutProcessStore
from app.checkout.session_engine import CheckoutSessionEngine
from app.config import (
    BrowserSettings,
    LLMSettings,
    get_browser_settings,
    get_checkout_settings,
    get_crawling_settings,
    get_llm_settings,
)
from app.crawling.browser.base import BrowserCapability, BrowserFactory, BrowserPool
from app.crawling.browser.http_browser import HttpBrowser
from app.crawling.browser.playwright_browser import PlaywrightBrowser
from app.crawling.config.loader import load_site_config
from app.crawling.error_classifier import ErrorClassifier
from app.crawling.logging_utils import log_event
from app.crawling.manager import CrawlingManager
from app.crawling.rate_limiter import DomainRateLimiter
from app.crawling.storage.base import DocumentStorage, InMemoryDocumentStorage
from app.crawling.storage.sqlalchemy_storage import SQLAlchemyDocumentStorage
from app.extraction.cache import ExtractionCache, InMemoryExtractionCache, SQLAlchemyExtractionCache
from app.extraction.dom_fallback import DomFallbackExtractor
from app.extraction.pipeline import ContentExtractionPipeline
from app.extraction.types import ExtractionOptions
from db.config import optional_database_url
from llm_extraction.adapter import BaseLLMAdapter, MockLLMAdapter, OpenAILLMAdapter

logger = logging.getLogger(__name__)


@dataclass
class CrawlRuntime:
    manager: CrawlingManager
    session_engine: CheckoutSessionEngine
    storage: DocumentStorage


def build_llm_adapter(settings: LLMSettings) -> BaseLLMAdapter | None:
    if settings.adapter == "none":
        return None
    if settings.adapter == "mock":
        return MockLLMAdapter()
    return OpenAILLMAdapter(
        model=settings.model,
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
        top_p=settings.top_p,
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout_seconds=settings.timeout_seconds,
    )


def build_browser_factory(settings: BrowserSettings) -> BrowserFactory:
    if settings.backend == "http":
        rate_limiter = DomainRateLimiter(default_rate_limit_per_second=settings.http_rate_limit_per_second)
        extra = {"user_agent": settings.user_agent} if settings.user_agent else {}

        def http_factory() -> BrowserCapability:
            return HttpBrowser(
                rate_limiter=rate_limiter,
                timeout_seconds=settings.timeout_ms / 1000.0,
                **extra,
            )

        return http_factory

    def playwright_factory() -> BrowserCapability:
        return PlaywrightBrowser(
            headless=settings.headless,
            locale=settings.locale,
            timeout_ms=settings.timeout_ms,
            user_agent=settings.user_agent,
        )

    return playwright_factory


def build_storage_and_cache(llm_settings: LLMSettings) -> tuple[DocumentStorage, ExtractionCache]:
    if optional_database_url() is None:
        log_event(logger, logging.WARNING, "database_not_configured", storage="memory")
        return InMemoryDocumentStorage(), InMemoryExtractionCache(ttl_seconds=llm_settings.cache_ttl_seconds)

    from db.session import get_session_factory

    session_factory = get_session_factory()
    return (
        SQLAlchemyDocumentStorage(session_factory=session_factory),
        SQLAlchemyExtractionCache(session_factory=session_factory, ttl_seconds=llm_settings.cache_ttl_seconds),
    )


def build_runtime() -> CrawlRuntime:
    """
    Assemble the crawl runtime from cached settings.
    """

    browser_settings = get_browser_settings()
    crawling = get_crawling_settings()
    llm_settings = get_llm_settings()
    checkout = get_checkout_settings()

    site_config = load_site_config(config_path=crawling.site_config_path)
    storage, cache = build_storage_and_cache(llm_settings)
    pipeline = ContentExtractionPipeline(
        adapter=build_llm_adapter(llm_settings),
        cache=cache,
        dom_extractor=DomFallbackExtractor(site_config=site_config),
        retry_initial_delay_seconds=crawling.retry_initial_seconds,
        retry_max_delay_seconds=crawling.retry_max_seconds,
    )
    pool = BrowserPool(
        factory=build_browser_factory(browser_settings),
        max_concurrent_browsers=browser_settings.max_concurrent_browsers,
        max_concurrent_pages=browser_settings.max_concurrent_pages,
    )
    process_store = CheckoutProcessStore(storage=storage)
    manager = CrawlingManager(
        pool=pool,
        pipeline=pipeline,
        site_config=site_config,
        storage=storage,
        process_store=process_store,
        classifier=ErrorClassifier(
            max_retry_attempts=crawling.max_retries,
            error_log_dir=crawling.error_log_dir,
            default_timeout_ms=browser_settings.timeout_ms,
        ),
        extraction_options=ExtractionOptions(
            chunk_size=llm_settings.chunk_size,
            max_parallel_chunks=llm_settings.max_parallel_chunks,
            batch_delay_seconds=llm_settings.batch_delay_seconds,
            use_cache=llm_settings.use_cache,
            max_attempts=llm_settings.max_attempts,
            temperature=llm_settings.temperature,
            max_tokens=llm_settings.max_tokens,
            top_p=llm_settings.top_p,
            top_k=llm_settings.top_k,
        ),
        max_active_tasks=crawling.max_active_tasks,
        max_retries=crawling.max_retries,
        retry_initial_seconds=crawling.retry_initial_seconds,
        retry_max_seconds=crawling.retry_max_seconds,
        max_concurrency=crawling.max_concurrency,
        max_products_per_category=crawling.max_products_per_category,
        max_pages=crawling.max_pages,
        page_settle_ms=crawling.page_settle_ms,
        batch_delay_seconds=crawling.batch_delay_seconds,
        category_delay_seconds=crawling.category_delay_seconds,
        checkout_max_depth=crawling.checkout_max_depth,
        screenshot_dir=crawling.screenshot_dir,
        history_size=crawling.history_size,
    )
    engine = CheckoutSessionEngine(
        process_store=process_store,
        expiry_minutes=checkout.session_expiry_minutes,
        default_checkout_url=site_config.checkout_url or checkout.default_checkout_url,
    )
    log_event(
        logger,
        logging.INFO,
        "crawl_runtime_built",
        site=site_config.name,
        browser_backend=browser_settings.backend,
        llm_adapter=llm_settings.adapter,
        max_active_tasks=manager.scheduler.max_active_tasks,
    )
    return CrawlRuntime(manager=manager, session_engine=engine, storage=storage)
