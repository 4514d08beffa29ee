"""SQLAlchemy models for posts and related attributes."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from feedback_portal.db.session import Base
from feedback_portal.db.time import utcnow


class Post(Base):
    """A piece of user feedback on a board.

    A post is either independent or a duplicate of exactly one canonical post
    (``canonical_post_id`` set). Canonical posts are never duplicates
    themselves, so the merge graph is at most one level deep.
    """

    __tablename__ = "post"
    __table_args__ = (
        Index("ix_post_canonical_post_id", "canonical_post_id"),
        Index("ix_post_board_deleted", "board_id", "deleted_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    board_id: Mapped[int] = mapped_column(Integer, ForeignKey("board.id"), nullable=False)
    principal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("principal.id", ondelete="SET NULL"),
        nullable=True,
    )

    title: Mapped[str] = mapped_column(Text, nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Rich-text document form of the body, when the editor supplied one.
    content_json: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Denormalized aggregates; vote_count spans the canonical and its duplicates.
    vote_count: Mapped[int] = mapped_column(default=0, nullable=False)
    comment_count: Mapped[int] = mapped_column(default=0, nullable=False)

    # Merge linkage; written only by services.merge.
    canonical_post_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("post.id"),
        nullable=True,
    )
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_by_principal_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("principal.id", ondelete="SET NULL"),
        nullable=True,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Null when AI features are disabled or the post predates embeddings.
    embedding: Mapped[list[float] | None] = mapped_column(JSON, nullable=True)
    embedding_model: Mapped[str | None] = mapped_column(Text, nullable=True)
    embedding_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    @property
    def is_merged(self) -> bool:
        """Return True if this post is a duplicate of another post."""
        return self.canonical_post_id is not None

    @property
    def is_deleted(self) -> bool:
        """Return True if this post has been soft-deleted."""
        return self.deleted_at is not None
