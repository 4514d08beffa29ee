"""Feedback suggestion resolution and queries.

A suggestion leaves ``pending`` exactly once. Resolution claims the row with
a compare-and-set ``UPDATE ... WHERE status = 'pending'`` inside the same
transaction as its side effect (merge, proxy vote or post creation), so two
concurrent resolvers cannot both act and a failed side effect leaves the
suggestion pending.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.orm import Session

from feedback_portal.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    VoteRecountError,
)
from feedback_portal.db.time import utcnow
from feedback_portal.models import FeedbackSuggestion, Post, RawFeedbackItem
from feedback_portal.models.feedback import (
    SOURCE_TYPE_PORTAL,
    SUGGESTION_STATUS_ACCEPTED,
    SUGGESTION_STATUS_DISMISSED,
    SUGGESTION_STATUS_EXPIRED,
    SUGGESTION_STATUS_PENDING,
    SUGGESTION_TYPE_CREATE,
    SUGGESTION_TYPE_MERGE,
)
from feedback_portal.repositories.post_repo import PostRepository
from feedback_portal.services.merge import merge_post
from feedback_portal.services.post_service import create_post

logger = logging.getLogger(__name__)

# Pending suggestions older than this are expired by expire_stale_suggestions.
SUGGESTION_EXPIRY_DAYS = 30

SuggestionSort = Literal["newest", "similarity"]


@dataclass(frozen=True)
class SuggestionEdits:
    """Caller overrides applied when accepting a create_post suggestion."""

    title: str | None = None
    body: str | None = None
    board_id: int | None = None


@dataclass(frozen=True)
class AcceptResult:
    """The post that absorbed or was created from the suggestion."""

    suggestion_id: int
    result_post_id: int
    created_post: bool = False


def get_suggestion(db: Session, suggestion_id: int) -> FeedbackSuggestion:
    """Return a suggestion or raise NotFoundError."""
    suggestion = db.get(FeedbackSuggestion, suggestion_id)
    if suggestion is None:
        raise NotFoundError(
            "SUGGESTION_NOT_FOUND", f"Suggestion with ID {suggestion_id} not found"
        )
    return suggestion


def accept_suggestion(
    db: Session,
    suggestion_id: int,
    actor_principal_id: int,
    edits: SuggestionEdits | None = None,
) -> AcceptResult:
    """Accept a pending suggestion, merging or creating a post.

    Raises:
        NotFoundError: The suggestion or a referenced post does not exist.
        ValidationError: The suggestion is already resolved, or the merge
            itself is invalid.
        ConflictError: Another resolver claimed the suggestion first, or the
            source post is already merged elsewhere.
    """
    suggestion = _get_pending(db, suggestion_id)
    try:
        _claim(db, suggestion_id, SUGGESTION_STATUS_ACCEPTED, actor_principal_id)
        if suggestion.suggestion_type == SUGGESTION_TYPE_MERGE:
            result_post_id = _apply_merge(db, suggestion, actor_principal_id)
        else:
            result_post_id = _apply_create(db, suggestion, actor_principal_id, edits)
    except VoteRecountError as exc:
        # Linkage and acceptance stand; the recount is retried separately.
        _record_result(db, suggestion_id, exc.post_id)
        _dismiss_siblings(
            db, suggestion, actor_principal_id, _merged_post_ids(db, suggestion, exc.post_id)
        )
        db.commit()
        raise
    except Exception:
        db.rollback()
        raise

    _record_result(db, suggestion_id, result_post_id)
    _dismiss_siblings(
        db, suggestion, actor_principal_id, _merged_post_ids(db, suggestion, result_post_id)
    )
    db.commit()

    logger.info(
        "Accepted %s suggestion %s by %s -> post %s",
        suggestion.suggestion_type,
        suggestion_id,
        actor_principal_id,
        result_post_id,
    )
    return AcceptResult(
        suggestion_id=suggestion_id,
        result_post_id=result_post_id,
        created_post=suggestion.suggestion_type == SUGGESTION_TYPE_CREATE,
    )


def dismiss_suggestion(db: Session, suggestion_id: int, actor_principal_id: int) -> None:
    """Dismiss a pending suggestion without touching any post.

    Raises:
        NotFoundError: The suggestion does not exist.
        ValidationError: The suggestion is already resolved.
        ConflictError: Another resolver claimed it first.
    """
    _get_pending(db, suggestion_id)
    try:
        _claim(db, suggestion_id, SUGGESTION_STATUS_DISMISSED, actor_principal_id)
    except ConflictError:
        db.rollback()
        raise
    db.commit()
    logger.info("Dismissed suggestion %s by %s", suggestion_id, actor_principal_id)


def expire_stale_suggestions(db: Session, now: datetime | None = None) -> int:
    """Expire pending suggestions created more than SUGGESTION_EXPIRY_DAYS ago.

    Returns:
        Number of suggestions expired.
    """
    cutoff = (now or utcnow()) - timedelta(days=SUGGESTION_EXPIRY_DAYS)
    result = db.execute(
        update(FeedbackSuggestion)
        .where(
            FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING,
            FeedbackSuggestion.created_at < cutoff,
        )
        .values(status=SUGGESTION_STATUS_EXPIRED, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d stale suggestions", expired)
    return expired


def list_suggestions(
    db: Session,
    *,
    status: str = SUGGESTION_STATUS_PENDING,
    suggestion_type: str | None = None,
    sort: SuggestionSort = "newest",
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[FeedbackSuggestion], int]:
    """Return a page of suggestions and the total matching count."""
    filters = [FeedbackSuggestion.status == status]
    if suggestion_type is not None:
        filters.append(FeedbackSuggestion.suggestion_type == suggestion_type)

    if sort == "similarity":
        order_by = [
            FeedbackSuggestion.similarity_score.desc().nulls_last(),
            FeedbackSuggestion.created_at.desc(),
            FeedbackSuggestion.id.desc(),
        ]
    else:
        order_by = [FeedbackSuggestion.created_at.desc(), FeedbackSuggestion.id.desc()]

    total = db.execute(
        select(func.count(FeedbackSuggestion.id)).where(*filters)
    ).scalar_one()
    rows = db.execute(
        select(FeedbackSuggestion).where(*filters).order_by(*order_by).limit(limit).offset(offset)
    ).scalars()
    return list(rows), int(total)


def suggestion_stats(db: Session) -> dict[str, int]:
    """Return pending suggestion counts per type plus a total."""
    rows = db.execute(
        select(FeedbackSuggestion.suggestion_type, func.count(FeedbackSuggestion.id))
        .where(FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING)
        .group_by(FeedbackSuggestion.suggestion_type)
    ).all()
    stats = {SUGGESTION_TYPE_MERGE: 0, SUGGESTION_TYPE_CREATE: 0, "total": 0}
    for suggestion_type, count in rows:
        stats[suggestion_type] = int(count)
        stats["total"] += int(count)
    return stats


def _get_pending(db: Session, suggestion_id: int) -> FeedbackSuggestion:
    suggestion = get_suggestion(db, suggestion_id)
    if suggestion.status != SUGGESTION_STATUS_PENDING:
        raise ValidationError(
            "SUGGESTION_RESOLVED",
            f"Suggestion {suggestion_id} is already {suggestion.status}",
        )
    return suggestion


def _claim(db: Session, suggestion_id: int, status: str, actor_principal_id: int) -> None:
    """Move a suggestion out of pending, failing if someone else already did."""
    now = utcnow()
    result = db.execute(
        update(FeedbackSuggestion)
        .where(
            FeedbackSuggestion.id == suggestion_id,
            FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING,
        )
        .values(
            status=status,
            resolved_at=now,
            resolved_by_principal_id=actor_principal_id,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise ConflictError(
            "SUGGESTION_RESOLVED",
            f"Suggestion {suggestion_id} was resolved by another request",
        )


def _record_result(db: Session, suggestion_id: int, result_post_id: int) -> None:
    db.execute(
        update(FeedbackSuggestion)
        .where(FeedbackSuggestion.id == suggestion_id)
        .values(result_post_id=result_post_id)
        .execution_options(synchronize_session="fetch")
    )


def _apply_merge(db: Session, suggestion: FeedbackSuggestion, actor_principal_id: int) -> int:
    if suggestion.target_post_id is None:
        raise ValidationError("INVALID_SUGGESTION", "Merge suggestion has no target post")

    target_id = suggestion.target_post_id
    raw_item = db.get(RawFeedbackItem, suggestion.raw_feedback_item_id)
    source_post_id = raw_item.source_post_id if raw_item is not None else None

    if source_post_id is not None:
        # A target merged since the suggestion was made stands for its canonical.
        target = db.get(Post, target_id)
        if target is not None and target.canonical_post_id is not None:
            target_id = target.canonical_post_id
        merge_post(db, source_post_id, target_id, actor_principal_id, commit=False)
        return target_id

    # External feedback has no post of its own: count its author as a voter.
    repo = PostRepository(db)
    target = repo.get_for_update(target_id, include_deleted=False)
    if target is None:
        raise NotFoundError("POST_NOT_FOUND", f"Post with ID {target_id} not found")
    canonical_id = target.canonical_post_id or target.id
    author_id = raw_item.principal_id if raw_item is not None else None
    if author_id is not None and repo.get_vote(canonical_id, author_id) is None:
        repo.add_vote(canonical_id, author_id)
        repo.recount_votes(canonical_id)
    return canonical_id


def _apply_create(
    db: Session,
    suggestion: FeedbackSuggestion,
    actor_principal_id: int,
    edits: SuggestionEdits | None,
) -> int:
    edits = edits or SuggestionEdits()
    board_id = edits.board_id or suggestion.board_id
    if board_id is None:
        raise ValidationError("BOARD_REQUIRED", "Board is required to create a post")

    raw_item = db.get(RawFeedbackItem, suggestion.raw_feedback_item_id)
    author_id = (raw_item.principal_id if raw_item is not None else None) or actor_principal_id

    post: Post = create_post(
        db,
        board_id=board_id,
        principal_id=author_id,
        title=edits.title or suggestion.suggested_title or "",
        body=edits.body if edits.body is not None else (suggestion.suggested_body or ""),
        commit=False,
    )
    repo = PostRepository(db)
    repo.add_vote(post.id, author_id)
    repo.recount_votes(post.id)
    return post.id


def _merged_post_ids(
    db: Session, suggestion: FeedbackSuggestion, result_post_id: int
) -> tuple[int, ...]:
    """Return the posts whose merge linkage an accepted suggestion changed."""
    if suggestion.suggestion_type != SUGGESTION_TYPE_MERGE:
        return ()
    raw_item = db.get(RawFeedbackItem, suggestion.raw_feedback_item_id)
    source_post_id = raw_item.source_post_id if raw_item is not None else None
    if source_post_id is None:
        return ()
    return (source_post_id, result_post_id)


def _dismiss_siblings(
    db: Session,
    suggestion: FeedbackSuggestion,
    actor_principal_id: int,
    merged_post_ids: tuple[int, ...] = (),
) -> None:
    """Dismiss pending suggestions made stale by accepting ``suggestion``.

    That is every other suggestion for the same feedback item and, after a
    post-to-post merge, every merge suggestion that has either merged post as
    its target or as its portal source.
    """
    stale = [FeedbackSuggestion.raw_feedback_item_id == suggestion.raw_feedback_item_id]
    if merged_post_ids:
        portal_sources = select(RawFeedbackItem.id).where(
            RawFeedbackItem.source_type == SOURCE_TYPE_PORTAL,
            RawFeedbackItem.external_id.in_([f"post:{pid}" for pid in merged_post_ids]),
        )
        stale.append(
            and_(
                FeedbackSuggestion.suggestion_type == SUGGESTION_TYPE_MERGE,
                or_(
                    FeedbackSuggestion.target_post_id.in_(merged_post_ids),
                    FeedbackSuggestion.raw_feedback_item_id.in_(portal_sources),
                ),
            )
        )

    now = utcnow()
    result = db.execute(
        update(FeedbackSuggestion)
        .where(
            or_(*stale),
            FeedbackSuggestion.id != suggestion.id,
            FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING,
        )
        .values(
            status=SUGGESTION_STATUS_DISMISSED,
            resolved_at=now,
            resolved_by_principal_id=actor_principal_id,
            updated_at=now,
        )
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount:
        logger.info(
            "Dismissed %d suggestion(s) superseded by suggestion %s",
            result.rowcount,
            suggestion.id,
        )
