"""
Storage layer exports.
"""

from app.crawling.storage.base import DocumentStorage, InMemoryDocumentStorage
from app.crawling.storage.sqlalchemy_storage import SQLAlchemyDocumentStorage

__all__ = ["DocumentStorage", "InMemoryDocumentStorage", "SQLAlchemyDocumentStorage"]
