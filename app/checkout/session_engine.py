"""
Checkout session engine.

One state machine per user and product:

    created -> collecting -> ready -> completed

Any state becomes `expired` once `updated_at` ages past the expiry window.
Expired sessions are reaped by `cleanup_expired_sessions`, which the
periodic sweep in `app.scheduler.jobs` calls. The engine owns its session
table; callers only ever receive copies.
"""

from __future__ import annotations

import copy
import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.checkout.descriptor import (
    DEFAULT_CHECKOUT_URL,
    CheckoutProcessDescriptor,
    CheckoutStep,
    FieldDescriptor,
)
from app.checkout.field_mapping import map_user_info_to_params
from app.checkout.process_store import CheckoutProcessStore
from app.checkout.synonyms import field_concept, is_concept_satisfied, lookup
from app.crawling.logging_utils import error_fields, log_event

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MINUTES = 30


class SessionState(str, Enum):
    CREATED = "created"
    COLLECTING = "collecting"
    READY = "ready"
    COMPLETED = "completed"
    EXPIRED = "expired"


@dataclass
class CheckoutSession:
    id: str
    user_id: str
    product_id: str
    created_at: datetime
    updated_at: datetime
    category: str | None = None
    state: SessionState = SessionState.CREATED
    collected_info: dict[str, Any] = field(default_factory=dict)
    completed_steps: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "category": self.category,
            "state": self.state.value,
            "collected_info": dict(self.collected_info),
            "completed_steps": list(self.completed_steps),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


def is_field_satisfied(field_descriptor: FieldDescriptor, info: dict[str, Any]) -> bool:
    """
    Exact name (case-insensitive), then the label's first token, then the synonym table.
    """

    if _has_value(lookup(info, field_descriptor.name)):
        return True

    label = (field_descriptor.label or "").strip().lower()
    if label:
        first_token = label.split()[0]
        if _has_value(lookup(info, first_token)):
            return True

    concept = field_concept(field_descriptor)
    return concept is not None and is_concept_satisfied(concept, info)


def _has_value(value: Any) -> bool:
    return value is not None and value != ""


class CheckoutSessionEngine:
    def __init__(
        self,
        *,
        process_store: CheckoutProcessStore,
        expiry_minutes: float = DEFAULT_EXPIRY_MINUTES,
        default_checkout_url: str = DEFAULT_CHECKOUT_URL,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        id_factory: Callable[[], str] = lambda: secrets.token_hex(16),
    ) -> None:
        self._process_store = process_store
        self._expiry_minutes = expiry_minutes
        self._default_checkout_url = default_checkout_url
        self._clock = clock
        self._id_factory = id_factory
        self._sessions: dict[str, CheckoutSession] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create_session(self, user_id: str, product_id: str, *, category: str | None = None) -> str:
        now = self._clock()
        session_id = self._id_factory()
        with self._lock:
            self._sessions[session_id] = CheckoutSession(
                id=session_id,
                user_id=user_id,
                product_id=product_id,
                category=category,
                created_at=now,
                updated_at=now,
            )
        log_event(
            logger,
            logging.INFO,
            "checkout_session_created",
            session_id=session_id,
            user_id=user_id,
            product_id=product_id,
        )
        return session_id

    def get_session(self, session_id: str) -> CheckoutSession | None:
        with self._lock:
            session = self._live_session(session_id)
            return copy.deepcopy(session) if session is not None else None

    def update_session_info(self, session_id: str, info: dict[str, Any]) -> bool:
        with self._lock:
            session = self._live_session(session_id)
            if session is None or session.state in {SessionState.EXPIRED, SessionState.COMPLETED}:
                return False
            session.collected_info.update(info)
            session.updated_at = self._clock()
            if session.state == SessionState.CREATED:
                session.state = SessionState.COLLECTING
            self._refresh_readiness(session)
            state = session.state
        log_event(
            logger,
            logging.INFO,
            "checkout_session_updated",
            session_id=session_id,
            keys=sorted(info),
            state=state.value,
        )
        return True

    def update_session_state(self, session_id: str, state: SessionState | str) -> bool:
        target = SessionState(state)
        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return False
            session.state = target
            session.updated_at = self._clock()
        log_event(logger, logging.INFO, "checkout_session_state_changed", session_id=session_id, state=target.value)
        return True

    def add_completed_step(self, session_id: str, step_name: str) -> bool:
        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return False
            if step_name not in session.completed_steps:
                session.completed_steps.append(step_name)
                session.updated_at = self._clock()
            self._refresh_readiness(session)
        log_event(logger, logging.INFO, "checkout_step_completed", session_id=session_id, step=step_name)
        return True

    def get_next_step(self, session_id: str) -> CheckoutStep | None:
        """
        First step whose name is not in the session's completed steps.
        """

        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return None
            return self._current_step(session)

    def get_required_fields_for_current_step(self, session_id: str) -> list[FieldDescriptor]:
        step = self.get_next_step(session_id)
        if step is None:
            return []
        return step.required_fields()

    def get_missing_required_fields(self, session_id: str) -> list[FieldDescriptor]:
        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return []
            return self._missing_fields(session)

    def calculate_progress(self, session_id: str) -> int:
        """
        Percentage of required fields across all steps that are already satisfied.
        """

        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return 0
            descriptor = self._descriptor_for(session)
            info = dict(session.collected_info)
        if descriptor is None:
            return 0
        required = descriptor.required_fields()
        if not required:
            return 100
        satisfied = sum(1 for item in required if is_field_satisfied(item, info))
        return round(satisfied * 100 / len(required))

    def generate_deeplink(self, session_id: str) -> dict[str, Any]:
        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return {"success": False, "error": "Session not found"}
            descriptor = self._descriptor_for(session)
            if descriptor is None:
                return {"success": False, "error": "Checkout process data not available"}
            info = dict(session.collected_info)
            missing = self._missing_fields(session)

        try:
            params = map_user_info_to_params(descriptor, info)
            params["session_id"] = session_id
            params["_t"] = str(int(self._clock().timestamp() * 1000))
            url = _with_query(descriptor.base_url or self._default_checkout_url, params)
        except ValueError as exc:
            log_event(logger, logging.ERROR, "checkout_deeplink_failed", session_id=session_id, **error_fields(exc))
            return {"success": False, "error": str(exc), "url": self._default_checkout_url}

        log_event(
            logger,
            logging.INFO,
            "checkout_deeplink_generated",
            session_id=session_id,
            param_count=len(params),
            missing_count=len(missing),
        )
        return {"success": True, "url": url, "has_all_required_info": not missing}

    def complete_checkout(self, session_id: str) -> bool:
        with self._lock:
            session = self._live_session(session_id)
            if session is None:
                return False
            self._refresh_readiness(session)
            if session.state != SessionState.READY:
                return False
            session.state = SessionState.COMPLETED
            session.updated_at = self._clock()
        log_event(logger, logging.INFO, "checkout_session_completed", session_id=session_id)
        return True

    def remove_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def cleanup_expired_sessions(self, window_minutes: float | None = None) -> int:
        """
        Remove sessions idle for strictly longer than the window.
        """

        window = timedelta(minutes=self._expiry_minutes if window_minutes is None else window_minutes)
        now = self._clock()
        with self._lock:
            expired = [
                session_id
                for session_id, session in self._sessions.items()
                if now - session.updated_at > window
            ]
            for session_id in expired:
                del self._sessions[session_id]

        if expired:
            log_event(logger, logging.INFO, "checkout_sessions_expired", count=len(expired))
        return len(expired)

    def _live_session(self, session_id: str) -> CheckoutSession | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if self._clock() - session.updated_at > timedelta(minutes=self._expiry_minutes):
            session.state = SessionState.EXPIRED
        return session

    def _descriptor_for(self, session: CheckoutSession) -> CheckoutProcessDescriptor | None:
        return self._process_store.load(session.product_id, session.category)

    def _current_step(self, session: CheckoutSession) -> CheckoutStep | None:
        descriptor = self._descriptor_for(session)
        if descriptor is None:
            return None
        for step in descriptor.walk():
            if step.name not in session.completed_steps:
                return step
        return None

    def _missing_fields(self, session: CheckoutSession) -> list[FieldDescriptor]:
        step = self._current_step(session)
        if step is None:
            return []
        return [item for item in step.required_fields() if not is_field_satisfied(item, session.collected_info)]

    def _refresh_readiness(self, session: CheckoutSession) -> None:
        if session.state not in {SessionState.COLLECTING, SessionState.READY}:
            return
        session.state = SessionState.COLLECTING if self._missing_fields(session) else SessionState.READY


def _with_query(base_url: str, params: dict[str, str]) -> str:
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Invalid checkout base URL: {base_url!r}")
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))
