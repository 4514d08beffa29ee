"""Post, merge and similarity Pydantic schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class PostCreate(BaseModel):
    """Schema for creating a new post."""

    board_id: int
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field("", max_length=20000)
    content_json: dict[str, Any] | None = None


class PostResponse(BaseModel):
    """Schema for post information returned by the API."""

    id: int
    board_id: int
    principal_id: int | None
    title: str
    body: str
    vote_count: int
    comment_count: int
    canonical_post_id: int | None
    merged_at: datetime | None
    merged_by_principal_id: int | None
    deleted_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MergeRequest(BaseModel):
    """Merge the path post (the duplicate) into ``canonical_post_id``."""

    canonical_post_id: int


class MergeResponse(BaseModel):
    canonical_post_id: int
    canonical_vote_count: int
    duplicate_post_id: int


class UnmergeResponse(BaseModel):
    post_id: int
    canonical_post_id: int
    canonical_vote_count: int


class VoteCountResponse(BaseModel):
    post_id: int
    vote_count: int


class VoteToggleResponse(BaseModel):
    """Whether the caller now votes on the post, and the post's own count."""

    voted: bool
    vote_count: int


class MergedPostResponse(BaseModel):
    """A duplicate as shown beneath its canonical post."""

    id: int
    title: str
    vote_count: int
    author_name: str | None
    created_at: datetime
    merged_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MergeInfoResponse(BaseModel):
    """Where a duplicate post was merged to."""

    canonical_post_id: int
    canonical_title: str
    canonical_board_slug: str
    merged_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SimilarPostResponse(BaseModel):
    """A duplicate candidate with its fused score."""

    post_id: int
    score: float = Field(..., ge=0.0, le=1.0)
    match_strength: Literal["strong", "good", "weak"]
    title: str
    vote_count: int
    board_slug: str
    canonical_post_id: int | None = None

    model_config = ConfigDict(from_attributes=True)


class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=5000)


class CommentResponse(BaseModel):
    id: int
    post_id: int
    principal_id: int | None
    body: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
