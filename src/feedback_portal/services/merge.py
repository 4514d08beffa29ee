"""Merge engine: linking duplicate posts into canonical posts and back.

Merging only links posts; nothing is copied or deleted. Votes and comments
stay attached to the post they were made on. The canonical post's
``vote_count`` is recomputed from vote rows after every linkage change so it
always equals the number of distinct voters across the canonical post and its
non-deleted duplicates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from feedback_portal.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    VoteRecountError,
)
from feedback_portal.models import Comment
from feedback_portal.repositories.post_repo import (
    MergedPostSummary,
    PostMergeInfo,
    PostRepository,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a successful merge."""

    canonical_post_id: int
    canonical_vote_count: int
    duplicate_post_id: int


@dataclass(frozen=True)
class UnmergeResult:
    """Outcome of a successful unmerge."""

    post_id: int
    canonical_post_id: int
    canonical_vote_count: int


def merge_post(
    db: Session,
    duplicate_post_id: int,
    canonical_post_id: int,
    actor_principal_id: int,
    *,
    commit: bool = True,
) -> MergeResult:
    """Merge a duplicate post into a canonical post.

    Args:
        db: Database session.
        duplicate_post_id: The post to mark as a duplicate.
        canonical_post_id: The post that absorbs the duplicate.
        actor_principal_id: Principal recorded in ``merged_by_principal_id``.
        commit: Commit on success. Pass False to fold the merge into the
            caller's transaction.

    Returns:
        The canonical post id and its reconciled vote count.

    Raises:
        ValidationError: Self-merge, a canonical that is itself a duplicate,
            or a duplicate that already has duplicates of its own.
        NotFoundError: Either post is missing or soft-deleted.
        ConflictError: The duplicate is already merged (possibly by a
            concurrent request).
        VoteRecountError: The linkage committed but the recount failed.
    """
    if duplicate_post_id == canonical_post_id:
        raise ValidationError("INVALID_MERGE", "A post cannot be merged into itself")

    repo = PostRepository(db)
    db.flush()

    # Lock in id order so two merges touching the same pair cannot deadlock.
    locked = {}
    for post_id in sorted((duplicate_post_id, canonical_post_id)):
        locked[post_id] = repo.get_for_update(post_id, include_deleted=False)
    duplicate = locked[duplicate_post_id]
    canonical = locked[canonical_post_id]

    if duplicate is None:
        raise NotFoundError(
            "POST_NOT_FOUND", f"Duplicate post with ID {duplicate_post_id} not found"
        )
    if canonical is None:
        raise NotFoundError(
            "POST_NOT_FOUND", f"Canonical post with ID {canonical_post_id} not found"
        )
    if duplicate.canonical_post_id is not None:
        raise ConflictError(
            "ALREADY_MERGED",
            "This post is already merged into another post. Unmerge it first.",
        )
    if canonical.canonical_post_id is not None:
        raise ValidationError(
            "INVALID_MERGE_TARGET",
            "Cannot merge into a post that is itself merged. Choose the canonical post instead.",
        )
    if repo.has_duplicates(duplicate_post_id):
        raise ValidationError(
            "HAS_DUPLICATES",
            "This post has duplicates merged into it. Unmerge them first.",
        )

    if not repo.link_to_canonical(duplicate_post_id, canonical_post_id, actor_principal_id):
        # Another writer merged or deleted the duplicate after our read.
        raise ConflictError(
            "ALREADY_MERGED",
            "This post is already merged into another post. Unmerge it first.",
        )

    vote_count = _recount_after_linkage(db, repo, canonical_post_id, commit=commit)
    if commit:
        db.commit()

    logger.info(
        "Merged post %s into %s by %s (vote_count=%d)",
        duplicate_post_id,
        canonical_post_id,
        actor_principal_id,
        vote_count,
    )
    return MergeResult(
        canonical_post_id=canonical_post_id,
        canonical_vote_count=vote_count,
        duplicate_post_id=duplicate_post_id,
    )


def unmerge_post(
    db: Session,
    post_id: int,
    actor_principal_id: int,
    *,
    commit: bool = True,
) -> UnmergeResult:
    """Restore a merged post to independent state.

    Raises:
        NotFoundError: The post does not exist.
        ValidationError: The post is not currently merged.
        ConflictError: The post was unmerged concurrently.
        VoteRecountError: The linkage committed but the recount failed.
    """
    repo = PostRepository(db)
    db.flush()

    post = repo.get_for_update(post_id)
    if post is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")
    if post.canonical_post_id is None:
        raise ValidationError("NOT_MERGED", "This post is not currently merged into another post")

    canonical_post_id = post.canonical_post_id
    if not repo.unlink_from_canonical(post_id, canonical_post_id):
        raise ConflictError("NOT_MERGED", "This post was unmerged by another request")

    vote_count = _recount_after_linkage(db, repo, canonical_post_id, commit=commit)
    if commit:
        db.commit()

    logger.info(
        "Unmerged post %s from %s by %s (vote_count=%d)",
        post_id,
        canonical_post_id,
        actor_principal_id,
        vote_count,
    )
    return UnmergeResult(
        post_id=post_id,
        canonical_post_id=canonical_post_id,
        canonical_vote_count=vote_count,
    )


def recalculate_vote_count(db: Session, post_id: int, *, commit: bool = True) -> int:
    """Recompute a post's vote count from vote rows.

    Idempotent; this is the retry path after a ``VoteRecountError``.

    Raises:
        NotFoundError: The post does not exist.
    """
    repo = PostRepository(db)
    if repo.get_by_id(post_id) is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")
    count = repo.recount_votes(post_id)
    if commit:
        db.commit()
    return count


def _recount_after_linkage(
    db: Session,
    repo: PostRepository,
    canonical_post_id: int,
    *,
    commit: bool,
) -> int:
    """Recount inside a savepoint so a failure leaves the linkage write intact."""
    try:
        with db.begin_nested():
            return repo.recount_votes(canonical_post_id)
    except SQLAlchemyError as exc:
        logger.warning(
            "Vote recount for post %s failed after linkage change: %s",
            canonical_post_id,
            exc,
        )
        if commit:
            db.commit()
        raise VoteRecountError(canonical_post_id) from exc


def get_merged_posts(db: Session, canonical_post_id: int) -> list[MergedPostSummary]:
    """Return the non-deleted duplicates of a canonical post, oldest merge first."""
    return PostRepository(db).merged_posts(canonical_post_id)


def get_merge_info(db: Session, post_id: int) -> PostMergeInfo | None:
    """Return where a duplicate was merged to, or None if it is not merged."""
    return PostRepository(db).merge_info(post_id)


def list_comments(db: Session, post_id: int) -> list[Comment]:
    """Return comments on a post together with those on its merged duplicates."""
    repo = PostRepository(db)
    return repo.list_comments(repo.related_post_ids(post_id))


def count_comments(db: Session, post_id: int) -> int:
    """Return the comment count across a post and its merged duplicates."""
    repo = PostRepository(db)
    return repo.count_comments(repo.related_post_ids(post_id))


def refresh_comment_count(db: Session, post_id: int, *, commit: bool = True) -> int:
    """Rewrite a post's stored comment count from its own comment rows.

    The stored count never includes duplicates; ``count_comments`` does that
    at query time.
    """
    repo = PostRepository(db)
    post = repo.get_for_update(post_id)
    if post is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {post_id} not found")
    post.comment_count = repo.count_comments([post_id])
    if commit:
        db.commit()
    return post.comment_count
