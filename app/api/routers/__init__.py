"""
app/api/routers package marker.
"""

from app.api.routers.checkout_router import router as checkout_router
from app.api.routers.crawl_router import router as crawl_router

__all__ = ["checkout_router", "crawl_router"]
