"""
db/models/extraction_cache_entry.py

Content-addressed extraction cache entries. Staleness is decided on read
from `stored_at`; rows are never deleted by the application.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONPayload


class ExtractionCacheEntry(Base):
    __tablename__ = "extraction_cache_entries"

    cache_key: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment="sha256 of chunk text, goal and model identity",
    )
    goal: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    model: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    result: Mapped[Any] = mapped_column(JSONPayload, nullable=True)
    stored_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
