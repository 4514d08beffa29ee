"""SQLAlchemy models for the feedback portal."""

from .comment import Comment
from .feedback import FeedbackSignal, FeedbackSuggestion, RawFeedbackItem
from .post import Post
from .principal import Board, Principal
from .vote import Vote

__all__ = [
    "Board",
    "Comment",
    "FeedbackSignal", "FeedbackSuggestion", "RawFeedbackItem",
    "Post",
    "Principal",
    "Vote",
]
