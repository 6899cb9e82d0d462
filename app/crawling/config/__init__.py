"""
Site configuration helpers for crawling and DOM fallback probes.
"""

from app.crawling.config.loader import load_site_config, parse_site_config
from app.crawling.config.models import NavigationSelectors, ProbeSet, ProbeSpec, SiteConfig

__all__ = [
    "NavigationSelectors",
    "ProbeSet",
    "ProbeSpec",
    "SiteConfig",
    "load_site_config",
    "parse_site_config",
]
