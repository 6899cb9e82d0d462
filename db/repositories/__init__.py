"""
Repository layer exports.
"""

from db.repositories.crawl_document_repository import CrawlDocumentRepository

__all__ = ["CrawlDocumentRepository"]
