"""
SQLAlchemy-backed storage implementation for crawl documents.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.crawling.logging_utils import error_fields, log_event
from app.crawling.storage.base import DocumentStorage
from db.repositories.crawl_document_repository import CrawlDocumentRepository

logger = logging.getLogger(__name__)


class SQLAlchemyDocumentStorage(DocumentStorage):
    """
    Persist crawl documents through the repository, one short-lived session per call.
    """

    def __init__(self, *, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def save(self, kind: str, key: str, payload: dict[str, Any]) -> None:
        session = self._session_factory()
        try:
            CrawlDocumentRepository(session).upsert(kind=kind, document_key=key, payload=payload)
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            log_event(logger, logging.ERROR, "document_save_failed", kind=kind, key=key, **error_fields(exc))
            raise
        finally:
            session.close()

    def load(self, kind: str, key: str) -> dict[str, Any] | None:
        session = self._session_factory()
        try:
            document = CrawlDocumentRepository(session).get(kind=kind, document_key=key)
            return dict(document.payload) if document is not None else None
        finally:
            session.close()

    def list_recent(self, kind: str, limit: int = 5) -> list[dict[str, Any]]:
        session = self._session_factory()
        try:
            documents = CrawlDocumentRepository(session).list_recent(kind=kind, limit=limit)
            return [dict(document.payload) for document in documents]
        finally:
            session.close()
