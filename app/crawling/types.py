"""
Shared crawl runtime data models.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class TaskKind(str, Enum):
    CATEGORY = "category"
    PRODUCT = "product"
    SEARCH = "search"
    CHECKOUT = "checkout"
    UPDATE = "update"
    BATCH = "batch"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


DEFAULT_TASK_PRIORITY = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CrawlTask:
    """
    One unit of scheduled crawl work. Mutated only by the task scheduler.
    """

    kind: TaskKind
    payload: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    priority: int = DEFAULT_TASK_PRIORITY
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: TaskStatus = TaskStatus.PENDING
    retries: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    last_error: str | None = None
    result: Any = None

    def context(self) -> dict[str, Any]:
        """
        Fields handed to the error classifier.
        """

        return {
            "task_id": self.id,
            "kind": self.kind.value,
            "url": self.payload.get("url"),
            "options": dict(self.options),
            "priority": self.priority,
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["status"] = self.status.value
        data.pop("result", None)
        return data


@dataclass(frozen=True)
class SchedulerStats:
    queued: int
    active: int
    succeeded: int
    failed: int
    retried: int
    elapsed_seconds: float
    status: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
