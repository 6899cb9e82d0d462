"""
Site crawler exports.
"""

from app.crawling.crawlers.base import CrawlerBase, product_id_from_url, slugify
from app.crawling.crawlers.category import CategoryCrawler
from app.crawling.crawlers.checkout_analyzer import CheckoutAnalyzer, parse_checkout_page
from app.crawling.crawlers.product import ProductCrawler
from app.crawling.crawlers.search import SearchCrawler

__all__ = [
    "CategoryCrawler",
    "CheckoutAnalyzer",
    "CrawlerBase",
    "ProductCrawler",
    "SearchCrawler",
    "parse_checkout_page",
    "product_id_from_url",
    "slugify",
]
