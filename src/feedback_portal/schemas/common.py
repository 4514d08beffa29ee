"""Shared Pydantic schemas for common API elements."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Body returned for domain errors."""

    code: str = Field(..., description="Stable machine-readable error code.")
    message: str


class CountResponse(BaseModel):
    """A single count, returned by bulk maintenance endpoints."""

    count: int
