"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .common import CountResponse, ErrorResponse
from .feedback import RawItemCreate, RawItemResponse, SignalBatch, SignalResponse
from .post import MergeRequest, MergeResponse, PostCreate, PostResponse, SimilarPostResponse
from .suggestion import AcceptSuggestionRequest, SuggestionPage, SuggestionResponse

__all__ = [
    "CountResponse", "ErrorResponse",
    "RawItemCreate", "RawItemResponse", "SignalBatch", "SignalResponse",
    "MergeRequest", "MergeResponse", "PostCreate", "PostResponse", "SimilarPostResponse",
    "AcceptSuggestionRequest", "SuggestionPage", "SuggestionResponse",
]
