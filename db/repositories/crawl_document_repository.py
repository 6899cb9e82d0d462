"""
Repository for persisted crawl result documents.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from db.models.crawl_document import CrawlDocument


class CrawlDocumentRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, *, kind: str, document_key: str) -> CrawlDocument | None:
        return self._session.get(CrawlDocument, (kind, document_key))

    def upsert(
        self,
        *,
        kind: str,
        document_key: str,
        payload: dict[str, Any],
    ) -> CrawlDocument:
        """
        Insert or replace the document stored under `(kind, document_key)`.
        """

        now = datetime.now(timezone.utc)
        document = self.get(kind=kind, document_key=document_key)
        if document is None:
            document = CrawlDocument(
                kind=kind,
                document_key=document_key,
                payload=payload,
                created_at=now,
                updated_at=now,
            )
            self._session.add(document)
        else:
            document.payload = payload
            document.updated_at = now
        self._session.flush()
        return document

    def list_recent(self, *, kind: str, limit: int = 5) -> list[CrawlDocument]:
        stmt: Select[tuple[CrawlDocument]] = (
            select(CrawlDocument)
            .where(CrawlDocument.kind == kind)
            .order_by(CrawlDocument.updated_at.desc())
            .limit(max(1, limit))
        )
        return list(self._session.scalars(stmt).all())

    def list_keys(self, *, kind: str) -> list[str]:
        stmt = (
            select(CrawlDocument.document_key)
            .where(CrawlDocument.kind == kind)
            .order_by(CrawlDocument.document_key)
        )
        return list(self._session.scalars(stmt).all())
