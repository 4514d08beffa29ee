"""Service-level helpers for posts, votes and comments."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from feedback_portal.core.errors import NotFoundError, ValidationError
from feedback_portal.db.time import utcnow
from feedback_portal.models import Board, Comment, Post
from feedback_portal.repositories.post_repo import PostRepository

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


@dataclass(frozen=True)
class VoteToggleResult:
    """Whether the principal now votes on the post, and the post's new count."""

    voted: bool
    vote_count: int


def create_post(
    db: Session,
    *,
    board_id: int,
    principal_id: int | None,
    title: str,
    body: str,
    content_json: dict[str, Any] | None = None,
    commit: bool = True,
) -> Post:
    """Create a post on a board.

    Raises:
        ValidationError: Empty or over-long title.
        NotFoundError: The board does not exist.
    """
    title = title.strip()
    if not title:
        raise ValidationError("INVALID_TITLE", "Title is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise ValidationError(
            "INVALID_TITLE", f"Title must be at most {MAX_TITLE_LENGTH} characters"
        )
    if db.get(Board, board_id) is None:
        raise NotFoundError("BOARD_NOT_FOUND", f"Board with ID {board_id} not found")

    post = PostRepository(db).create(
        board_id=board_id,
        principal_id=principal_id,
        title=title,
        body=body,
        content_json=content_json,
    )
    if commit:
        db.commit()
    return post


def toggle_vote(
    db: Session,
    post_id: int,
    principal_id: int,
    *,
    commit: bool = True,
) -> VoteToggleResult:
    """Add the principal's vote on a post, or remove it if present.

    The post's own count and, for a duplicate, its canonical post's count are
    recomputed in the same transaction as the vote write.

    Raises:
        NotFoundError: The post is missing or soft-deleted.
    """
    repo = PostRepository(db)
    post = repo.get_for_update(post_id, include_deleted=False)
    if post is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")

    existing = repo.get_vote(post_id, principal_id)
    if existing is not None:
        db.delete(existing)
        db.flush()
        voted = False
    else:
        repo.add_vote(post_id, principal_id)
        voted = True

    vote_count = repo.recount_votes(post_id)
    if post.canonical_post_id is not None:
        repo.recount_votes(post.canonical_post_id)

    if commit:
        db.commit()
    return VoteToggleResult(voted=voted, vote_count=vote_count)


def soft_delete_post(db: Session, post_id: int, *, commit: bool = True) -> Post:
    """Hide a post from listings and search while keeping its merge linkage.

    A deleted duplicate stops contributing voters to its canonical post.
    """
    repo = PostRepository(db)
    post = repo.get_for_update(post_id)
    if post is None or post.deleted_at is not None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")

    post.deleted_at = utcnow()
    db.flush()
    if post.canonical_post_id is not None:
        repo.recount_votes(post.canonical_post_id)
    if commit:
        db.commit()
    logger.info("Soft-deleted post %s", post_id)
    return post


def restore_post(db: Session, post_id: int, *, commit: bool = True) -> Post:
    """Undo a soft delete."""
    repo = PostRepository(db)
    post = repo.get_for_update(post_id)
    if post is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")
    if post.deleted_at is None:
        raise ValidationError("NOT_DELETED", "This post is not deleted")

    post.deleted_at = None
    db.flush()
    if post.canonical_post_id is not None:
        repo.recount_votes(post.canonical_post_id)
    if commit:
        db.commit()
    logger.info("Restored post %s", post_id)
    return post


def add_comment(
    db: Session,
    post_id: int,
    principal_id: int | None,
    body: str,
    *,
    commit: bool = True,
) -> Comment:
    """Attach a comment to a post and bump its own comment count."""
    body = body.strip()
    if not body:
        raise ValidationError("INVALID_COMMENT", "Comment body is required")

    repo = PostRepository(db)
    post = repo.get_for_update(post_id, include_deleted=False)
    if post is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")

    comment = Comment(post_id=post_id, principal_id=principal_id, body=body)
    db.add(comment)
    db.flush()
    post.comment_count = repo.count_comments([post_id])
    if commit:
        db.commit()
    return comment
