"""
app/services package marker.
"""

from app.services.crawl_runtime import CrawlRuntime, build_runtime

__all__ = ["CrawlRuntime", "build_runtime"]
