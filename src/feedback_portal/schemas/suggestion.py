"""Feedback suggestion Pydantic schemas."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class SuggestionResponse(BaseModel):
    """Schema for a feedback suggestion returned by the API."""

    id: int
    suggestion_type: Literal["merge_post", "create_post"]
    status: Literal["pending", "accepted", "dismissed", "expired"]
    raw_feedback_item_id: int
    signal_id: int | None
    board_id: int | None
    target_post_id: int | None
    similarity_score: float | None
    suggested_title: str | None
    suggested_body: str | None
    reasoning: str | None
    result_post_id: int | None
    resolved_at: datetime | None
    resolved_by_principal_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SuggestionPage(BaseModel):
    items: list[SuggestionResponse]
    total: int


class AcceptSuggestionRequest(BaseModel):
    """Optional overrides applied when accepting a create_post suggestion."""

    title: str | None = Field(None, min_length=1, max_length=200)
    body: str | None = None
    board_id: int | None = None


class AcceptSuggestionResponse(BaseModel):
    suggestion_id: int
    result_post_id: int


class SuggestionStatsResponse(BaseModel):
    """Pending suggestion counts."""

    merge_post: int
    create_post: int
    total: int
