"""
Storage layer interfaces for persisted crawl documents.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any


class DocumentStorage(ABC):
    """
    Storage abstraction for crawl result documents keyed by `(kind, key)`.
    """

    @abstractmethod
    def save(self, kind: str, key: str, payload: dict[str, Any]) -> None:
        """
        Persist a document, replacing any previous version.
        """

    @abstractmethod
    def load(self, kind: str, key: str) -> dict[str, Any] | None:
        """
        Return the stored document or None.
        """

    @abstractmethod
    def list_recent(self, kind: str, limit: int = 5) -> list[dict[str, Any]]:
        """
        Return up to `limit` documents of a kind, most recently saved first.
        """


class InMemoryDocumentStorage(DocumentStorage):
    """
    Process-local storage used when no database is configured.
    """

    def __init__(self) -> None:
        self._documents: dict[tuple[str, str], dict[str, Any]] = {}
        self._order: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def save(self, kind: str, key: str, payload: dict[str, Any]) -> None:
        with self._lock:
            slot = (kind, key)
            self._documents[slot] = copy.deepcopy(payload)
            if slot in self._order:
                self._order.remove(slot)
            self._order.append(slot)

    def load(self, kind: str, key: str) -> dict[str, Any] | None:
        with self._lock:
            payload = self._documents.get((kind, key))
            return copy.deepcopy(payload) if payload is not None else None

    def list_recent(self, kind: str, limit: int = 5) -> list[dict[str, Any]]:
        with self._lock:
            slots = [slot for slot in reversed(self._order) if slot[0] == kind]
            return [copy.deepcopy(self._documents[slot]) for slot in slots[: max(1, limit)]]

    def keys(self, kind: str) -> list[str]:
        with self._lock:
            return sorted(key for stored_kind, key in self._documents if stored_kind == kind)
