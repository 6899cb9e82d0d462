from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI


def _validate_env() -> None:
    """
    Validate environment variables at startup.

    Raises RuntimeError listing every missing or invalid variable so the
    operator can fix all problems in one restart cycle.

    Rules:
    - LLM API key is required when LLM_ADAPTER is openai.
    - BROWSER_BACKEND must be playwright or http.
    - The site configuration file must exist.
    """

    from app.crawling.config.loader import resolve_config_path
    from db.config import load_env_files

    load_env_files()

    errors: list[str] = []

    adapter = os.getenv("LLM_ADAPTER", "openai").strip().lower()
    if adapter not in {"openai", "mock", "none"}:
        errors.append(f"LLM_ADAPTER='{adapter}' is not valid. Allowed values: ['mock', 'none', 'openai'].")
    elif adapter == "openai":
        if not os.getenv("LLM_API_KEY", "").strip() and not os.getenv("OPENAI_API_KEY", "").strip():
            errors.append(
                "LLM API key is not set. Provide LLM_API_KEY or OPENAI_API_KEY, "
                "or set LLM_ADAPTER=none to extract with DOM probes only."
            )

    backend = os.getenv("BROWSER_BACKEND", "playwright").strip().lower()
    if backend not in {"playwright", "http"}:
        errors.append(f"BROWSER_BACKEND='{backend}' is not valid. Allowed values: ['http', 'playwright'].")

    site_config = os.getenv("SITE_CONFIG_PATH", "app/crawling/config/site.json").strip()
    if not resolve_config_path(site_config).is_file():
        errors.append(f"SITE_CONFIG_PATH points at a missing file: {site_config}")

    if errors:
        raise RuntimeError(
            "Startup validation failed, missing or invalid environment variables:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )


def _configure_logging() -> None:
    """
    Configure root logging once for the API process.
    """

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Build the crawl runtime, start the dispatch loop and the sweep; stop both on exit."""
    from app.config import get_checkout_settings
    from app.scheduler.jobs import build_scheduler
    from app.services.crawl_runtime import build_runtime

    log = logging.getLogger(__name__)
    runtime = build_runtime()
    application.state.runtime = runtime
    runtime.manager.start()

    scheduler = build_scheduler(
        engine=runtime.session_engine,
        interval_minutes=get_checkout_settings().sweep_interval_minutes,
    )
    scheduler.start()
    log.info("Scheduler started with %d jobs", len(scheduler.get_jobs()))
    try:
        yield
    finally:
        scheduler.shutdown(wait=True)
        await runtime.manager.shutdown()
        application.state.runtime = None
        log.info("Crawl runtime and scheduler shut down")


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.
    """

    _validate_env()
    _configure_logging()

    application = FastAPI(
        title="Retail Crawl API",
        version="1.0.0",
        lifespan=_lifespan,
    )

    from app.api.routers import checkout_router, crawl_router

    application.include_router(crawl_router)
    application.include_router(checkout_router)

    @application.get("/health")
    def healthcheck() -> dict[str, Any]:
        runtime = getattr(application.state, "runtime", None)
        if runtime is None:
            return {"status": "starting"}
        return {
            "status": "ok",
            "queue": runtime.manager.scheduler.stats().to_dict(),
            "checkout_sessions": len(runtime.session_engine),
        }

    return application


app = create_app()
