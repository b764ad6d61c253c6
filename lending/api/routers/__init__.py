"""
API Routers
===========

FastAPI routers for different API endpoints.
"""

from .health import router as health_router
from .lending import router as lending_router

__all__ = [
    "health_router",
    "lending_router",
]
