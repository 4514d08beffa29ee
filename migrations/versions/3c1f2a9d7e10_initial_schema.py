"""initial schema

Revision ID: 3c1f2a9d7e10
Revises:
Create Date: 2026-10-17 09:12:41.518204

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3c1f2a9d7e10"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create principals, boards, posts, votes, comments and the feedback pipeline."""
    op.create_table(
        "principal",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "board",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_table(
        "post",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("board_id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("content_json", sa.JSON(), nullable=True),
        sa.Column("vote_count", sa.Integer(), nullable=False),
        sa.Column("comment_count", sa.Integer(), nullable=False),
        sa.Column("canonical_post_id", sa.Integer(), nullable=True),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("merged_by_principal_id", sa.Integer(), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("embedding", sa.JSON(), nullable=True),
        sa.Column("embedding_model", sa.Text(), nullable=True),
        sa.Column("embedding_updated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["board_id"], ["board.id"]),
        sa.ForeignKeyConstraint(["principal_id"], ["principal.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["canonical_post_id"], ["post.id"]),
        sa.ForeignKeyConstraint(
            ["merged_by_principal_id"], ["principal.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_post_canonical_post_id", "post", ["canonical_post_id"])
    op.create_index("ix_post_board_deleted", "post", ["board_id", "deleted_at"])

    if op.get_bind().dialect.name == "postgresql":
        op.execute(
            "CREATE INDEX ix_post_search ON post USING gin "
            "(to_tsvector('english', coalesce(title, '') || ' ' || coalesce(body, '')))"
        )

    op.create_table(
        "vote",
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["post.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["principal_id"], ["principal.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("post_id", "principal_id"),
    )
    op.create_index("ix_vote_post_id", "vote", ["post_id"])

    op.create_table(
        "comment",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["post_id"], ["post.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["principal_id"], ["principal.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_comment_post_id", "comment", ["post_id"])

    op.create_table(
        "raw_feedback_item",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_type", sa.Text(), nullable=False),
        sa.Column("external_id", sa.Text(), nullable=False),
        sa.Column("external_url", sa.Text(), nullable=True),
        sa.Column("content", sa.JSON(), nullable=False),
        sa.Column("principal_id", sa.Integer(), nullable=True),
        sa.Column("processing_state", sa.Text(), nullable=False),
        sa.Column("state_changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempt_count", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["principal_id"], ["principal.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "source_type", "external_id", name="uq_raw_feedback_source_external"
        ),
    )
    op.create_index("ix_raw_feedback_item_state", "raw_feedback_item", ["processing_state"])

    op.create_table(
        "feedback_signal",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("raw_feedback_item_id", sa.Integer(), nullable=False),
        sa.Column("signal_type", sa.Text(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=False),
        sa.Column("implicit_need", sa.Text(), nullable=True),
        sa.Column("evidence", sa.JSON(), nullable=False),
        sa.Column("board_id", sa.Integer(), nullable=True),
        sa.Column("extraction_confidence", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "extraction_confidence >= 0 AND extraction_confidence <= 1",
            name="ck_feedback_signal_confidence",
        ),
        sa.ForeignKeyConstraint(
            ["raw_feedback_item_id"], ["raw_feedback_item.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["board_id"], ["board.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_feedback_signal_raw_item", "feedback_signal", ["raw_feedback_item_id"]
    )

    op.create_table(
        "feedback_suggestion",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("suggestion_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("raw_feedback_item_id", sa.Integer(), nullable=False),
        sa.Column("signal_id", sa.Integer(), nullable=True),
        sa.Column("board_id", sa.Integer(), nullable=True),
        sa.Column("target_post_id", sa.Integer(), nullable=True),
        sa.Column("similarity_score", sa.Float(), nullable=True),
        sa.Column("suggested_title", sa.Text(), nullable=True),
        sa.Column("suggested_body", sa.Text(), nullable=True),
        sa.Column("reasoning", sa.Text(), nullable=True),
        sa.Column("result_post_id", sa.Integer(), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by_principal_id", sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "suggestion_type IN ('merge_post', 'create_post')",
            name="ck_feedback_suggestion_type",
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'dismissed', 'expired')",
            name="ck_feedback_suggestion_status",
        ),
        sa.ForeignKeyConstraint(
            ["raw_feedback_item_id"], ["raw_feedback_item.id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(["signal_id"], ["feedback_signal.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["board_id"], ["board.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["target_post_id"], ["post.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["result_post_id"], ["post.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["resolved_by_principal_id"], ["principal.id"], ondelete="SET NULL"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_feedback_suggestion_status", "feedback_suggestion", ["status"])
    op.create_index(
        "ix_feedback_suggestion_raw_item", "feedback_suggestion", ["raw_feedback_item_id"]
    )
    op.create_index(
        "ix_feedback_suggestion_target_post", "feedback_suggestion", ["target_post_id"]
    )


def downgrade() -> None:
    """Drop every table created by upgrade."""
    op.drop_table("feedback_suggestion")
    op.drop_table("feedback_signal")
    op.drop_table("raw_feedback_item")
    op.drop_table("comment")
    op.drop_table("vote")
    if op.get_bind().dialect.name == "postgresql":
        op.execute("DROP INDEX IF EXISTS ix_post_search")
    op.drop_table("post")
    op.drop_table("board")
    op.drop_table("principal")
