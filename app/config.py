"""
app/config.py

Application-level configuration helpers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from db.config import load_env_files

_BROWSER_BACKENDS = {"playwright", "http"}
_LLM_ADAPTERS = {"openai", "mock", "none"}


@lru_cache(maxsize=1)
def _load_env_once() -> None:
    """
    Ensure project `.env` files are loaded once before reading app settings.
    """

    load_env_files()


def _get_bool_env(name: str, default: bool) -> bool:
    """
    Read a boolean from environment variables with safe fallback.
    """

    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int_env(name: str, default: int) -> int:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError:
        return default


def _get_float_env(name: str, default: float) -> float:
    _load_env_once()
    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError:
        return default


def _get_str_env(name: str, default: str) -> str:
    """
    Read a string from environment variables with fallback for blank values.
    """

    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return default
    stripped = value.strip()
    return stripped if stripped else default


def _get_optional_str_env(name: str) -> str | None:
    _load_env_once()
    value = os.getenv(name)
    if value is None:
        return None
    stripped = value.strip()
    return stripped if stripped else None


def _get_choice_env(name: str, default: str, allowed: set[str]) -> str:
    value = _get_str_env(name, default).lower()
    if value not in allowed:
        raise RuntimeError(f"{name} '{value}' is not valid. Allowed values: {sorted(allowed)}.")
    return value


@dataclass(frozen=True)
class BrowserSettings:
    """
    Browser automation settings.
    """

    backend: str
    headless: bool
    max_concurrent_browsers: int
    max_concurrent_pages: int
    locale: str
    timeout_ms: int
    user_agent: str | None
    http_rate_limit_per_second: float


@dataclass(frozen=True)
class CrawlingSettings:
    """
    Task scheduling, pacing and crawl limits.
    """

    site_config_path: str
    max_retries: int
    retry_initial_seconds: float
    retry_max_seconds: float
    max_active_tasks: int
    max_concurrency: int
    max_products_per_category: int
    max_pages: int
    page_settle_ms: int
    batch_delay_seconds: float
    category_delay_seconds: float
    checkout_max_depth: int
    history_size: int
    error_log_dir: str | None
    screenshot_dir: str | None


@dataclass(frozen=True)
class LLMSettings:
    """
    Completion-service and chunked extraction settings.
    """

    adapter: str
    model: str
    api_key: str | None
    base_url: str | None
    timeout_seconds: float
    temperature: float
    max_tokens: int
    top_p: float
    top_k: int
    chunk_size: int
    max_parallel_chunks: int
    batch_delay_seconds: float
    max_attempts: int
    use_cache: bool
    cache_ttl_seconds: int


@dataclass(frozen=True)
class CheckoutSettings:
    default_checkout_url: str
    session_expiry_minutes: int
    sweep_interval_minutes: int


@lru_cache(maxsize=1)
def get_browser_settings() -> BrowserSettings:
    return BrowserSettings(
        backend=_get_choice_env("BROWSER_BACKEND", "playwright", _BROWSER_BACKENDS),
        headless=_get_bool_env("BROWSER_HEADLESS", True),
        max_concurrent_browsers=max(1, _get_int_env("BROWSER_MAX_CONCURRENT", 5)),
        max_concurrent_pages=max(1, _get_int_env("BROWSER_MAX_PAGES", 10)),
        locale=_get_str_env("BROWSER_LOCALE", "pt-BR"),
        timeout_ms=max(1000, _get_int_env("BROWSER_TIMEOUT_MS", 30000)),
        user_agent=_get_optional_str_env("BROWSER_USER_AGENT"),
        http_rate_limit_per_second=max(0.1, _get_float_env("HTTP_RATE_LIMIT_PER_SECOND", 1.0)),
    )


@lru_cache(maxsize=1)
def get_crawling_settings() -> CrawlingSettings:
    return CrawlingSettings(
        site_config_path=_get_str_env("SITE_CONFIG_PATH", "app/crawling/config/site.json"),
        max_retries=max(0, _get_int_env("CRAWL_MAX_RETRIES", 3)),
        retry_initial_seconds=max(0.0, _get_float_env("CRAWL_RETRY_INITIAL_SECONDS", 1.0)),
        retry_max_seconds=max(0.0, _get_float_env("CRAWL_RETRY_MAX_SECONDS", 30.0)),
        max_active_tasks=max(1, _get_int_env("CRAWL_MAX_ACTIVE_TASKS", 10)),
        max_concurrency=max(1, _get_int_env("CRAWL_MAX_CONCURRENCY", 5)),
        max_products_per_category=max(1, _get_int_env("CRAWL_MAX_PRODUCTS_PER_CATEGORY", 30)),
        max_pages=max(1, _get_int_env("CRAWL_MAX_PAGES", 3)),
        page_settle_ms=max(0, _get_int_env("CRAWL_PAGE_SETTLE_MS", 2000)),
        batch_delay_seconds=max(0.0, _get_float_env("CRAWL_BATCH_DELAY_SECONDS", 3.0)),
        category_delay_seconds=max(0.0, _get_float_env("CRAWL_CATEGORY_DELAY_SECONDS", 5.0)),
        checkout_max_depth=max(1, _get_int_env("CHECKOUT_MAX_DEPTH", 3)),
        history_size=max(1, _get_int_env("CRAWL_HISTORY_SIZE", 100)),
        error_log_dir=_get_optional_str_env("CRAWL_ERROR_LOG_DIR"),
        screenshot_dir=_get_optional_str_env("CHECKOUT_SCREENSHOT_DIR"),
    )


@lru_cache(maxsize=1)
def get_llm_settings() -> LLMSettings:
    return LLMSettings(
        adapter=_get_choice_env("LLM_ADAPTER", "openai", _LLM_ADAPTERS),
        model=_get_str_env("LLM_MODEL", "gpt-4o-mini"),
        api_key=_get_optional_str_env("LLM_API_KEY") or _get_optional_str_env("OPENAI_API_KEY"),
        base_url=_get_optional_str_env("LLM_BASE_URL"),
        timeout_seconds=max(1.0, _get_float_env("LLM_TIMEOUT_SECONDS", 60.0)),
        temperature=max(0.0, _get_float_env("LLM_TEMPERATURE", 0.2)),
        max_tokens=max(1, _get_int_env("LLM_MAX_TOKENS", 1024)),
        top_p=min(1.0, max(0.0, _get_float_env("LLM_TOP_P", 0.8))),
        top_k=max(1, _get_int_env("LLM_TOP_K", 40)),
        chunk_size=max(1, _get_int_env("EXTRACTION_CHUNK_SIZE", 4000)),
        max_parallel_chunks=max(1, _get_int_env("EXTRACTION_MAX_PARALLEL_CHUNKS", 3)),
        batch_delay_seconds=max(0.0, _get_float_env("EXTRACTION_BATCH_DELAY_SECONDS", 2.0)),
        max_attempts=max(1, _get_int_env("EXTRACTION_MAX_ATTEMPTS", 3)),
        use_cache=_get_bool_env("EXTRACTION_USE_CACHE", True),
        cache_ttl_seconds=max(0, _get_int_env("EXTRACTION_CACHE_TTL_SECONDS", 86400)),
    )


@lru_cache(maxsize=1)
def get_checkout_settings() -> CheckoutSettings:
    return CheckoutSettings(
        default_checkout_url=_get_str_env("CHECKOUT_DEFAULT_URL", "https://www.lge.com/br/checkout"),
        session_expiry_minutes=max(1, _get_int_env("CHECKOUT_SESSION_EXPIRY_MINUTES", 30)),
        sweep_interval_minutes=max(1, _get_int_env("CHECKOUT_SWEEP_INTERVAL_MINUTES", 5)),
    )
