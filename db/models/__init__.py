"""
Model package exports.

Import all SQLAlchemy models here so metadata registration and Alembic
autogeneration work without extra imports.
"""

from db.models.crawl_document import CrawlDocument, CrawlDocumentKind
from db.models.extraction_cache_entry import ExtractionCacheEntry

__all__ = [
    "CrawlDocument",
    "CrawlDocumentKind",
    "ExtractionCacheEntry",
]
