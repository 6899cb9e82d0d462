"""
Maps a failure raised by a crawl task to a recovery decision.

Typed errors from `app.crawling.errors` are classified by class. Anything else
(Playwright errors, requests errors, plain RuntimeError) is classified by
ordered substring rules on its message; the first matching rule wins.
"""

from __future__ import annotations

import json
import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from app.crawling.errors import (
    AccessBlockedError,
    BrowserCrashError,
    ParseFailureError,
    StructuralMismatchError,
    TransientNetworkError,
    ValidationError,
)
from app.crawling.logging_utils import error_fields, log_event

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1",
)


class RecoveryAction(str, Enum):
    RETRY = "retry"
    SKIP = "skip"
    ABORT = "abort"


@dataclass(frozen=True)
class RecoveryDecision:
    """
    What the scheduler should do with a failed task.
    """

    action: RecoveryAction
    reason: str
    delay_seconds: float | None = None
    modify_options: dict[str, Any] = field(default_factory=dict)
    restart_browser: bool = False

    @property
    def should_retry(self) -> bool:
        return self.action is RecoveryAction.RETRY


_Rule = Callable[["ErrorClassifier", Mapping[str, Any], int], RecoveryDecision]


def _network(classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="network_error",
        delay_seconds=min(1.0 * (2**retries), 30.0),
    )


def _timeout(classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int) -> RecoveryDecision:
    options = context.get("options") or {}
    current_timeout = float(options.get("timeout_ms", classifier.default_timeout_ms))
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="timeout",
        delay_seconds=3.0,
        modify_options={"timeout_ms": int(current_timeout * 1.5)},
    )


def _connection_refused(
    classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int
) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="connection_refused",
        delay_seconds=10.0 * (retries + 1),
    )


def _access_denied(
    classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int
) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="access_denied",
        delay_seconds=15.0 * (retries + 1),
        modify_options={
            "use_proxy": True,
            "rotate_user_agent": True,
            "user_agent": classifier.pick_user_agent(),
        },
    )


def _captcha(classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int) -> RecoveryDecision:
    return RecoveryDecision(action=RecoveryAction.SKIP, reason="captcha")


def _not_found(classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int) -> RecoveryDecision:
    return RecoveryDecision(action=RecoveryAction.SKIP, reason="not_found")


def _protocol_error(
    classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int
) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="browser_protocol_error",
        delay_seconds=3.0,
        restart_browser=True,
    )


def _target_closed(
    classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int
) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="browser_crash",
        delay_seconds=5.0,
        restart_browser=True,
    )


def _default(classifier: "ErrorClassifier", context: Mapping[str, Any], retries: int) -> RecoveryDecision:
    return RecoveryDecision(
        action=RecoveryAction.RETRY,
        reason="unknown_error",
        delay_seconds=min(2.0 * (1.5**retries), 20.0),
    )


# Order matters: ERR_CONNECTION_REFUSED must be tested before the broader
# net::ERR_CONNECTION prefix.
MESSAGE_RULES: tuple[tuple[str, _Rule], ...] = (
    ("ERR_CONNECTION_REFUSED", _connection_refused),
    ("net::ERR_CONNECTION", _network),
    ("net::ERR_TIMED_OUT", _timeout),
    ("Navigation timeout", _timeout),
    ("Timeout", _timeout),
    ("CAPTCHA", _captcha),
    ("403", _access_denied),
    ("Access denied", _access_denied),
    ("Forbidden", _access_denied),
    ("404", _not_found),
    ("Not found", _not_found),
    ("Protocol error", _protocol_error),
    ("Target closed", _target_closed),
)


class ErrorClassifier:
    """
    Classify task failures into retry/skip/abort decisions with backoff hints.
    """

    def __init__(
        self,
        *,
        max_retry_attempts: int = 3,
        error_log_dir: str | None = None,
        default_timeout_ms: int = 30000,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.max_retry_attempts = max(0, max_retry_attempts)
        self.error_log_dir = Path(error_log_dir) if error_log_dir else None
        self.default_timeout_ms = default_timeout_ms
        self._rng = rng

    def classify(
        self,
        error: BaseException,
        *,
        context: Mapping[str, Any] | None = None,
        retries: int = 0,
    ) -> RecoveryDecision:
        context = context or {}
        if self.error_log_dir is not None:
            self._write_error_detail(self.error_log_dir, error, context, retries)

        decision = self._decide(error, context, retries)
        log_event(
            logger,
            logging.WARNING,
            "crawl_error_classified",
            task_id=context.get("task_id"),
            kind=context.get("kind"),
            url=context.get("url"),
            retries=retries,
            action=decision.action.value,
            reason=decision.reason,
            delay_seconds=decision.delay_seconds,
            **error_fields(error),
        )
        return decision

    def retry_limit(self, context: Mapping[str, Any]) -> int:
        """
        Effective retry budget for one task: an explicit `max_retries` in the
        context, else the task's `options["max_retries"]`, else the default.
        """

        raw = context.get("max_retries")
        if raw is None:
            options = context.get("options") or {}
            raw = options.get("max_retries", self.max_retry_attempts)
        try:
            return max(0, int(raw))
        except (TypeError, ValueError):
            return self.max_retry_attempts

    def pick_user_agent(self) -> str:
        index = int(self._rng() * len(USER_AGENTS)) % len(USER_AGENTS)
        return USER_AGENTS[index]

    def _decide(
        self,
        error: BaseException,
        context: Mapping[str, Any],
        retries: int,
    ) -> RecoveryDecision:
        if isinstance(error, ValidationError):
            return RecoveryDecision(action=RecoveryAction.ABORT, reason="validation_error")

        if retries >= self.retry_limit(context):
            return RecoveryDecision(action=RecoveryAction.SKIP, reason="max_retries_exceeded")

        if isinstance(error, StructuralMismatchError):
            return RecoveryDecision(action=RecoveryAction.SKIP, reason="structural_mismatch")
        if isinstance(error, ParseFailureError):
            return RecoveryDecision(action=RecoveryAction.SKIP, reason="parse_failure")
        if isinstance(error, AccessBlockedError):
            if error.captcha:
                return _captcha(self, context, retries)
            return _access_denied(self, context, retries)
        if isinstance(error, BrowserCrashError):
            return _target_closed(self, context, retries)
        if isinstance(error, TransientNetworkError):
            return _network(self, context, retries)

        message = str(error) or error.__class__.__name__
        for needle, rule in MESSAGE_RULES:
            if needle in message:
                return rule(self, context, retries)
        return _default(self, context, retries)

    def _write_error_detail(
        self,
        directory: Path,
        error: BaseException,
        context: Mapping[str, Any],
        retries: int,
    ) -> None:
        timestamp = datetime.now(timezone.utc).isoformat()
        safe_stamp = timestamp.replace(":", "-").replace(".", "-").replace("+", "_")
        payload = {
            "timestamp": timestamp,
            "error": {
                "message": str(error),
                "type": error.__class__.__name__,
            },
            "context": {key: value for key, value in context.items() if key != "browser"},
            "retries": retries,
        }
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / f"crawling_error_{safe_stamp}.json"
            path.write_text(json.dumps(payload, default=str, indent=2), encoding="utf-8")
        except OSError as exc:
            log_event(
                logger,
                logging.ERROR,
                "error_detail_write_failed",
                directory=str(directory),
                **error_fields(exc),
            )
