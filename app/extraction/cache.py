"""
Content-addressed extraction cache with read-time TTL checks.

Keys are derived from the chunk text, the goal and the model identity, so a
given key is only ever written with the result of the same input. Concurrent
writers therefore overwrite each other with equivalent values and entries are
never deleted explicitly; staleness is decided when reading.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crawling.logging_utils import error_fields, log_event
from db.models.extraction_cache_entry import ExtractionCacheEntry

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60


class ExtractionCache(ABC):
    """
    Storage abstraction for per-chunk extraction results.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """
        Return the cached result, or None when missing or expired.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, *, goal: str = "", model: str = "") -> None:
        """
        Store a result under its content-derived key.
        """


class InMemoryExtractionCache(ExtractionCache):
    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at > self._ttl_seconds:
            return None
        return value

    async def set(self, key: str, value: Any, *, goal: str = "", model: str = "") -> None:
        self._entries[key] = (self._clock(), value)

    def __len__(self) -> int:
        return len(self._entries)


class SQLAlchemyExtractionCache(ExtractionCache):
    """
    Persist cache entries through short-lived SQLAlchemy sessions.

    Database calls run in a worker thread so the event loop keeps dispatching
    other chunks.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any, *, goal: str = "", model: str = "") -> None:
        await asyncio.to_thread(self._set_sync, key, value, goal, model)

    def _get_sync(self, key: str) -> Any | None:
        session = self._session_factory()
        try:
            entry = session.execute(
                select(ExtractionCacheEntry).where(ExtractionCacheEntry.cache_key == key)
            ).scalar_one_or_none()
        finally:
            session.close()
        if entry is None:
            return None
        stored_at = entry.stored_at
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=timezone.utc)
        if self._clock() - stored_at > self._ttl:
            return None
        return entry.result

    def _set_sync(self, key: str, value: Any, goal: str, model: str) -> None:
        session = self._session_factory()
        try:
            session.merge(
                ExtractionCacheEntry(
                    cache_key=key,
                    goal=goal[:500],
                    model=model[:120],
                    result=value,
                    stored_at=self._clock(),
                )
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            log_event(logger, logging.ERROR, "extraction_cache_write_failed", cache_key=key, **error_fields(exc))
            raise
        finally:
            session.close()
