"""
Browser capability exports.
"""

from app.crawling.browser.base import BrowserCapability, BrowserFactory, BrowserPool
from app.crawling.browser.http_browser import HttpBrowser
from app.crawling.browser.playwright_browser import PlaywrightBrowser

__all__ = ["BrowserCapability", "BrowserFactory", "BrowserPool", "HttpBrowser", "PlaywrightBrowser"]
