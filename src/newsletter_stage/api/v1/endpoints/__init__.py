"""API endpoint modules for version 1."""

from .newsletters import router as newsletters_router

__all__ = [
    "newsletters_router",
]
