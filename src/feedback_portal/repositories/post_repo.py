"""Data access helpers for working with posts, votes and merge linkage.

Every query that does not return ORM entities decodes its rows here into a
typed dataclass; raw rows never leave this module.
"""
from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, union, update
from sqlalchemy.orm import Session, aliased

from feedback_portal.db.time import utcnow
from feedback_portal.models import Board, Comment, Post, Principal, Vote

__all__ = [
    "MergedPostSummary",
    "PostMergeInfo",
    "PostRepository",
    "PostSummary",
]


@dataclass(frozen=True)
class MergedPostSummary:
    """A duplicate post as listed under its canonical post."""

    id: int
    title: str
    vote_count: int
    author_name: str | None
    created_at: datetime
    merged_at: datetime


@dataclass(frozen=True)
class PostMergeInfo:
    """Where a duplicate post was merged to."""

    canonical_post_id: int
    canonical_title: str
    canonical_board_slug: str
    merged_at: datetime


@dataclass(frozen=True)
class PostSummary:
    """Display fields for a post returned by similarity search."""

    id: int
    title: str
    vote_count: int
    board_slug: str
    canonical_post_id: int | None


class PostRepository:
    """Thin wrapper around database access for post entities."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    def get_by_id(self, post_id: int, *, include_deleted: bool = True) -> Post | None:
        """Return a post by identifier."""
        stmt = select(Post).where(Post.id == post_id)
        if not include_deleted:
            stmt = stmt.where(Post.deleted_at.is_(None))
        return self.session.execute(stmt).scalars().first()

    def get_for_update(self, post_id: int, *, include_deleted: bool = True) -> Post | None:
        """Return a post with its row locked until the transaction ends.

        The lock is a no-op on SQLite; the compare-and-set updates below keep
        the race guarantees there.
        """
        stmt = select(Post).where(Post.id == post_id).with_for_update()
        if not include_deleted:
            stmt = stmt.where(Post.deleted_at.is_(None))
        return self.session.execute(stmt).scalars().first()

    def create(
        self,
        *,
        board_id: int,
        principal_id: int | None,
        title: str,
        body: str,
        content_json: dict | None = None,
    ) -> Post:
        """Insert a new post and return the persisted ORM instance."""
        post = Post(
            board_id=board_id,
            principal_id=principal_id,
            title=title,
            body=body,
            content_json=content_json,
        )
        self.session.add(post)
        self.session.flush()
        return post

    # ------------------------------------------------------------------
    # Merge linkage
    # ------------------------------------------------------------------

    def link_to_canonical(self, duplicate_id: int, canonical_id: int, actor_id: int) -> bool:
        """Set the duplicate's canonical post only if it is currently unmerged.

        Returns:
            True if the row was updated; False if another writer merged or
            deleted it first.
        """
        result = self.session.execute(
            update(Post)
            .where(
                Post.id == duplicate_id,
                Post.canonical_post_id.is_(None),
                Post.deleted_at.is_(None),
            )
            .values(
                canonical_post_id=canonical_id,
                merged_at=utcnow(),
                merged_by_principal_id=actor_id,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def unlink_from_canonical(self, post_id: int, canonical_id: int) -> bool:
        """Clear merge linkage only if the post still points at ``canonical_id``."""
        result = self.session.execute(
            update(Post)
            .where(Post.id == post_id, Post.canonical_post_id == canonical_id)
            .values(canonical_post_id=None, merged_at=None, merged_by_principal_id=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount == 1

    def has_duplicates(self, post_id: int) -> bool:
        """Return True if any post (deleted or not) is merged into ``post_id``."""
        stmt = select(Post.id).where(Post.canonical_post_id == post_id).limit(1)
        return self.session.execute(stmt).first() is not None

    def related_post_ids(self, canonical_id: int) -> list[int]:
        """Return the canonical post id plus its non-deleted duplicates."""
        stmt = select(Post.id).where(
            Post.canonical_post_id == canonical_id,
            Post.deleted_at.is_(None),
        )
        return [canonical_id, *self.session.execute(stmt).scalars()]

    # ------------------------------------------------------------------
    # Vote reconciliation
    # ------------------------------------------------------------------

    def recount_votes(self, post_id: int) -> int:
        """Recompute and store the distinct-voter count for a post's merge group.

        Related set, distinct count and write run as a single UPDATE statement,
        so no vote toggle can interleave between read and write.
        """
        # Aliased so the subquery is not correlated with the UPDATE target.
        related = aliased(Post)
        related_ids = union(
            select(related.id).where(related.id == post_id),
            select(related.id).where(
                related.canonical_post_id == post_id,
                related.deleted_at.is_(None),
            ),
        ).subquery()
        distinct_voters = (
            select(func.count(func.distinct(Vote.principal_id)))
            .where(Vote.post_id.in_(select(related_ids.c.id)))
            .scalar_subquery()
        )
        self.session.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(vote_count=distinct_voters)
            .execution_options(synchronize_session=False)
        )
        post = self.session.execute(
            select(Post).where(Post.id == post_id).execution_options(populate_existing=True)
        ).scalar_one()
        return int(post.vote_count)

    def get_vote(self, post_id: int, principal_id: int) -> Vote | None:
        """Return a principal's vote on a post, if any."""
        return self.session.get(Vote, (post_id, principal_id))

    def add_vote(self, post_id: int, principal_id: int) -> Vote:
        """Insert a vote row."""
        vote = Vote(post_id=post_id, principal_id=principal_id)
        self.session.add(vote)
        self.session.flush()
        return vote

    def distinct_voter_ids(self, post_ids: Sequence[int]) -> set[int]:
        """Return the distinct voters across ``post_ids``."""
        stmt = select(Vote.principal_id).where(Vote.post_id.in_(post_ids)).distinct()
        return set(self.session.execute(stmt).scalars())

    # ------------------------------------------------------------------
    # Comments across a merge group
    # ------------------------------------------------------------------

    def list_comments(self, post_ids: Sequence[int]) -> list[Comment]:
        """Return non-deleted comments on any of ``post_ids``, oldest first."""
        stmt = (
            select(Comment)
            .where(Comment.post_id.in_(post_ids), Comment.deleted_at.is_(None))
            .order_by(Comment.created_at, Comment.id)
        )
        return list(self.session.execute(stmt).scalars())

    def count_comments(self, post_ids: Sequence[int]) -> int:
        """Return the number of non-deleted comments on any of ``post_ids``."""
        stmt = select(func.count(Comment.id)).where(
            Comment.post_id.in_(post_ids),
            Comment.deleted_at.is_(None),
        )
        return int(self.session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def merged_posts(self, canonical_id: int) -> list[MergedPostSummary]:
        """Return non-deleted duplicates of ``canonical_id`` ordered by merge time."""
        author = aliased(Principal)
        stmt = (
            select(
                Post.id,
                Post.title,
                Post.vote_count,
                Post.created_at,
                Post.merged_at,
                author.display_name,
            )
            .outerjoin(author, author.id == Post.principal_id)
            .where(Post.canonical_post_id == canonical_id, Post.deleted_at.is_(None))
            .order_by(Post.merged_at.asc(), Post.id.asc())
        )
        return [
            MergedPostSummary(
                id=row.id,
                title=row.title,
                vote_count=int(row.vote_count),
                author_name=row.display_name,
                created_at=row.created_at,
                merged_at=row.merged_at,
            )
            for row in self.session.execute(stmt)
        ]

    def merge_info(self, post_id: int) -> PostMergeInfo | None:
        """Return the canonical post a duplicate points at, or None."""
        canonical = aliased(Post)
        stmt = (
            select(
                Post.merged_at,
                canonical.id.label("canonical_id"),
                canonical.title.label("canonical_title"),
                Board.slug.label("board_slug"),
            )
            .join(canonical, canonical.id == Post.canonical_post_id)
            .join(Board, Board.id == canonical.board_id)
            .where(Post.id == post_id, Post.merged_at.is_not(None))
        )
        row = self.session.execute(stmt).first()
        if row is None:
            return None
        return PostMergeInfo(
            canonical_post_id=row.canonical_id,
            canonical_title=row.canonical_title,
            canonical_board_slug=row.board_slug,
            merged_at=row.merged_at,
        )

    def summaries(self, post_ids: Sequence[int]) -> dict[int, PostSummary]:
        """Return display summaries for non-deleted posts keyed by id."""
        if not post_ids:
            return {}
        stmt = (
            select(
                Post.id,
                Post.title,
                Post.vote_count,
                Post.canonical_post_id,
                Board.slug,
            )
            .join(Board, Board.id == Post.board_id)
            .where(Post.id.in_(post_ids), Post.deleted_at.is_(None))
        )
        return {
            row.id: PostSummary(
                id=row.id,
                title=row.title,
                vote_count=int(row.vote_count),
                board_slug=row.slug,
                canonical_post_id=row.canonical_post_id,
            )
            for row in self.session.execute(stmt)
        }
