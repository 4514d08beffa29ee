"""Models for ingested feedback, extracted signals and suggestions."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from feedback_portal.db.session import Base
from feedback_portal.db.time import utcnow

# Raw feedback item processing states:
# received -> ready_for_extraction -> extracted -> completed, or -> failed.
ITEM_STATE_RECEIVED = "received"
ITEM_STATE_READY = "ready_for_extraction"
ITEM_STATE_EXTRACTED = "extracted"
ITEM_STATE_COMPLETED = "completed"
ITEM_STATE_FAILED = "failed"

# Raw items from this source reference an existing portal post ("post:<id>").
SOURCE_TYPE_PORTAL = "portal"

SUGGESTION_TYPE_MERGE = "merge_post"
SUGGESTION_TYPE_CREATE = "create_post"

# Suggestion states; every state other than pending is terminal.
SUGGESTION_STATUS_PENDING = "pending"
SUGGESTION_STATUS_ACCEPTED = "accepted"
SUGGESTION_STATUS_DISMISSED = "dismissed"
SUGGESTION_STATUS_EXPIRED = "expired"


class RawFeedbackItem(Base):
    """A unit of feedback as received from a source, before interpretation."""

    __tablename__ = "raw_feedback_item"
    __table_args__ = (
        UniqueConstraint("source_type", "external_id", name="uq_raw_feedback_source_external"),
        Index("ix_raw_feedback_item_state", "processing_state"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source_type: Mapped[str] = mapped_column(Text, nullable=False)
    external_id: Mapped[str] = mapped_column(Text, nullable=False)
    external_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # {"subject": ..., "text": ...}
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    principal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("principal.id", ondelete="SET NULL"),
        nullable=True,
    )

    processing_state: Mapped[str] = mapped_column(
        Text, nullable=False, default=ITEM_STATE_RECEIVED
    )
    state_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    attempt_count: Mapped[int] = mapped_column(default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def source_post_id(self) -> int | None:
        """Return the portal post this item was ingested from, if any."""
        if self.source_type != SOURCE_TYPE_PORTAL:
            return None
        prefix, _, raw_id = self.external_id.partition(":")
        if prefix != "post" or not raw_id.isdigit():
            return None
        return int(raw_id)


class FeedbackSignal(Base):
    """A single actionable signal extracted from a raw item by the AI extractor."""

    __tablename__ = "feedback_signal"
    __table_args__ = (
        CheckConstraint(
            "extraction_confidence >= 0 AND extraction_confidence <= 1",
            name="ck_feedback_signal_confidence",
        ),
        Index("ix_feedback_signal_raw_item", "raw_feedback_item_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    raw_feedback_item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("raw_feedback_item.id", ondelete="CASCADE"),
        nullable=False,
    )
    signal_type: Mapped[str] = mapped_column(Text, nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    implicit_need: Mapped[str | None] = mapped_column(Text, nullable=True)
    evidence: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    board_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("board.id", ondelete="SET NULL"),
        nullable=True,
    )
    extraction_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class FeedbackSuggestion(Base):
    """A proposed merge into an existing post, or a proposed new post."""

    __tablename__ = "feedback_suggestion"
    __table_args__ = (
        CheckConstraint(
            "suggestion_type IN ('merge_post', 'create_post')",
            name="ck_feedback_suggestion_type",
        ),
        CheckConstraint(
            "status IN ('pending', 'accepted', 'dismissed', 'expired')",
            name="ck_feedback_suggestion_status",
        ),
        Index("ix_feedback_suggestion_status", "status"),
        Index("ix_feedback_suggestion_raw_item", "raw_feedback_item_id"),
        Index("ix_feedback_suggestion_target_post", "target_post_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    suggestion_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=SUGGESTION_STATUS_PENDING)

    raw_feedback_item_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("raw_feedback_item.id", ondelete="CASCADE"),
        nullable=False,
    )
    signal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("feedback_signal.id", ondelete="SET NULL"),
        nullable=True,
    )
    board_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("board.id", ondelete="SET NULL"),
        nullable=True,
    )

    # merge_post
    target_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("post.id", ondelete="CASCADE"),
        nullable=True,
    )
    similarity_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # create_post
    suggested_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggested_body: Mapped[str | None] = mapped_column(Text, nullable=True)

    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)

    result_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("post.id", ondelete="SET NULL"),
        nullable=True,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by_principal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("principal.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
