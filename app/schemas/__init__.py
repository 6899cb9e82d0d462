"""
app/schemas package marker.
"""

from app.schemas.checkout import (
    CheckoutDeeplinkResponse,
    CheckoutSessionCreateRequest,
    CheckoutSessionInfoRequest,
    CheckoutSessionResponse,
    MissingFieldResponse,
)
from app.schemas.crawl import (
    CrawlTaskRequest,
    CrawlTaskResponse,
    CrawlTaskStatusResponse,
    QueueClearedResponse,
)

__all__ = [
    "CheckoutDeeplinkResponse",
    "CheckoutSessionCreateRequest",
    "CheckoutSessionInfoRequest",
    "CheckoutSessionResponse",
    "CrawlTaskRequest",
    "CrawlTaskResponse",
    "CrawlTaskStatusResponse",
    "MissingFieldResponse",
    "QueueClearedResponse",
]
