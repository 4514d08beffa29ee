"""API endpoint modules for version 1."""

from .feedback import router as feedback_router
from .posts import router as posts_router
from .suggestions import router as suggestions_router

__all__ = [
    "feedback_router",
    "posts_router",
    "suggestions_router",
]
