"""
app/api/dependencies.py

Shared FastAPI dependencies resolving the runtime built at startup.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from app.checkout.session_engine import CheckoutSessionEngine
from app.crawling.manager import CrawlingManager
from app.services.crawl_runtime import CrawlRuntime


def get_runtime(request: Request) -> CrawlRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Crawl runtime is not initialised.",
        )
    return runtime


def get_crawling_manager(request: Request) -> CrawlingManager:
    return get_runtime(request).manager


def get_session_engine(request: Request) -> CheckoutSessionEngine:
    return get_runtime(request).session_engine
