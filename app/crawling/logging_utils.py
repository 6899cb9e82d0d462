"""
Structured logging helpers for crawl, extraction and checkout events.
"""

from __future__ import annotations

import json
import logging
from typing import Any


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, sort_keys=True))


def error_fields(error: BaseException) -> dict[str, str]:
    """
    Flatten an exception into log-friendly fields.
    """

    return {
        "error": str(error) or error.__class__.__name__,
        "error_type": error.__class__.__name__,
    }
