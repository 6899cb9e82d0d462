"""
db/models/crawl_document.py

Persisted crawl result documents (category, product, search, checkout, batch).
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONPayload, TimestampMixin


class CrawlDocumentKind:
    CATEGORY = "category"
    PRODUCT = "product"
    SEARCH = "search"
    CHECKOUT = "checkout"
    BATCH = "batch"


class CrawlDocument(Base, TimestampMixin):
    __tablename__ = "crawl_documents"

    kind: Mapped[str] = mapped_column(
        String(32),
        primary_key=True,
        comment="category, product, search, checkout, batch",
    )
    document_key: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Slug or identifier unique within the kind",
    )
    payload: Mapped[dict[str, Any]] = mapped_column(
        JSONPayload,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_crawl_documents_kind_updated_at", "kind", "updated_at"),
    )
