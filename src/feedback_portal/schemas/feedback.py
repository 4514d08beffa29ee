"""Raw feedback item and signal Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RawItemCreate(BaseModel):
    """Schema for ingesting a unit of feedback from a source."""

    source_type: str = Field(..., min_length=1, max_length=64)
    external_id: str = Field(..., min_length=1, max_length=512)
    external_url: str | None = None
    content: dict[str, Any] = Field(default_factory=dict)
    principal_id: int | None = None


class RawItemResponse(BaseModel):
    id: int
    source_type: str
    external_id: str
    external_url: str | None
    content: dict[str, Any]
    principal_id: int | None
    processing_state: str
    attempt_count: int
    last_error: str | None
    processed_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SignalIn(BaseModel):
    """One extracted signal as reported by the extractor."""

    signal_type: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    implicit_need: str | None = None
    evidence: list[str] = Field(default_factory=list)
    board_id: int | None = None
    extraction_confidence: float = Field(..., ge=0.0, le=1.0)


class SignalBatch(BaseModel):
    signals: list[SignalIn]


class SignalResponse(BaseModel):
    id: int
    raw_feedback_item_id: int
    signal_type: str
    summary: str
    implicit_need: str | None
    evidence: list[str]
    board_id: int | None
    extraction_confidence: float

    model_config = ConfigDict(from_attributes=True)


class ExtractionFailure(BaseModel):
    error: str = Field(..., min_length=1)


class PipelineStatsResponse(BaseModel):
    """Raw items per processing state plus pending suggestions."""

    received: int
    ready_for_extraction: int
    extracted: int
    completed: int
    failed: int
    pending_suggestions: int
