"""Version 1 API endpoints."""

from .endpoints import feedback_router, posts_router, suggestions_router

__all__ = [
    "feedback_router",
    "posts_router",
    "suggestions_router",
]
