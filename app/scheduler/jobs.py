"""
app/scheduler/jobs.py

APScheduler periodic jobs for the checkout session engine.

Schedule
--------
  checkout_session_sweep: every `CHECKOUT_SWEEP_INTERVAL_MINUTES` (default 5)
                          removes sessions idle past the expiry window.

Call ``build_scheduler()`` once on app boot, start it, and shut it down
gracefully on exit. It is wired into FastAPI via the ``lifespan`` in main.py.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from app.checkout.session_engine import CheckoutSessionEngine
from app.crawling.logging_utils import error_fields, log_event

logger = logging.getLogger(__name__)

SESSION_SWEEP_JOB_ID = "checkout_session_sweep"


def run_session_sweep(engine: CheckoutSessionEngine) -> int:
    """
    Reap expired checkout sessions. Errors are logged; the next run retries.
    """

    try:
        removed = engine.cleanup_expired_sessions()
    except Exception as exc:
        log_event(logger, logging.ERROR, "session_sweep_failed", **error_fields(exc))
        return 0
    log_event(logger, logging.INFO, "session_sweep_completed", removed=removed, remaining=len(engine))
    return removed


def build_scheduler(*, engine: CheckoutSessionEngine, interval_minutes: int = 5) -> BackgroundScheduler:
    """
    Returns a configured but *not yet started* ``BackgroundScheduler``.
    """

    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        run_session_sweep,
        trigger="interval",
        minutes=max(1, interval_minutes),
        args=[engine],
        id=SESSION_SWEEP_JOB_ID,
        name="Checkout session expiry sweep",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
    )
    return scheduler
