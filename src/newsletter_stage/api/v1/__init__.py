"""Version 1 API endpoints."""

from .endpoints import newsletters_router

__all__ = [
    "newsletters_router",
]
