"""Models capturing voting interactions on posts."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer
from sqlalchemy.orm import Mapped, mapped_column

from feedback_portal.db.session import Base
from feedback_portal.db.time import utcnow


class Vote(Base):
    """Per-principal upvote on a post."""

    __tablename__ = "vote"
    __table_args__ = (Index("ix_vote_post_id", "post_id"),)

    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("post.id", ondelete="CASCADE"),
        primary_key=True,
    )

    # Composite primary key prevents duplicate votes from the same principal.
    principal_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("principal.id", ondelete="CASCADE"),
        primary_key=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
