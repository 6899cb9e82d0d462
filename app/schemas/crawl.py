"""
app/schemas/crawl.py

Request and response schemas for crawl task ingress.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CrawlTaskRequest(BaseModel):
    """
    One crawl task submission.
    """

    kind: str = Field(..., description="category, product, search, checkout, update or batch")
    payload: dict[str, Any] = Field(default_factory=dict)
    options: dict[str, Any] = Field(default_factory=dict)
    priority: int | None = Field(default=None, description="Lower runs first; defaults to 10")


class CrawlTaskResponse(BaseModel):
    task_id: str
    kind: str
    status: str


class CrawlTaskStatusResponse(BaseModel):
    id: str
    kind: str
    status: str
    priority: int
    retries: int
    last_error: str | None = None


class QueueClearedResponse(BaseModel):
    cleared: int = Field(..., ge=0)
