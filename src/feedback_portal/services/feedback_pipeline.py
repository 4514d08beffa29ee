"""Feedback pipeline: raw item lifecycle and suggestion generation.

Items move ``received -> ready_for_extraction -> extracted -> completed``, or
to ``failed`` from any step. Signal extraction itself happens outside this
module; its output is recorded with :func:`record_extraction` and then
:func:`generate_suggestions` turns each signal into merge or create
suggestions using similarity search.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from feedback_portal.core.errors import NotFoundError, ValidationError
from feedback_portal.db.time import utcnow
from feedback_portal.models import FeedbackSignal, FeedbackSuggestion, RawFeedbackItem
from feedback_portal.models.feedback import (
    ITEM_STATE_COMPLETED,
    ITEM_STATE_EXTRACTED,
    ITEM_STATE_FAILED,
    ITEM_STATE_READY,
    ITEM_STATE_RECEIVED,
    SUGGESTION_STATUS_PENDING,
    SUGGESTION_TYPE_CREATE,
    SUGGESTION_TYPE_MERGE,
)
from feedback_portal.services.similarity import SimilarPost

logger = logging.getLogger(__name__)

# Fused similarity at or above this makes a candidate a merge suggestion.
MERGE_SUGGESTION_THRESHOLD = 0.75
MAX_MERGE_SUGGESTIONS_PER_SIGNAL = 3
# Fetched per signal; more than kept so canonical resolution can drop some.
SIMILAR_CANDIDATES_PER_SIGNAL = 10
MAX_SUGGESTED_TITLE_LENGTH = 200
MAX_ERROR_LENGTH = 2000


class SimilarPostFinder(Protocol):
    """Source of duplicate candidates, normally a SimilaritySearch."""

    async def find_similar(
        self, query_text: str, limit: int = 5, *, exclude_post_ids: Any = ()
    ) -> list[SimilarPost]:
        ...


class ExtractionQueue(Protocol):
    """Where items ready for signal extraction are handed off."""

    def enqueue(self, raw_feedback_item_id: int) -> None:
        ...


class LoggingExtractionQueue:
    """Queue that only records hand-offs; used when no worker is attached."""

    def enqueue(self, raw_feedback_item_id: int) -> None:
        logger.info("Raw feedback item %s queued for extraction", raw_feedback_item_id)


@dataclass(frozen=True)
class ExtractedSignal:
    """One signal produced by the extractor for a raw item."""

    signal_type: str
    summary: str
    extraction_confidence: float
    implicit_need: str | None = None
    evidence: list[str] = field(default_factory=list)
    board_id: int | None = None


def ingest_raw_item(
    db: Session,
    *,
    source_type: str,
    external_id: str,
    content: dict[str, Any],
    principal_id: int | None = None,
    external_url: str | None = None,
) -> tuple[RawFeedbackItem, bool]:
    """Store a raw item unless one with the same source identity exists.

    Returns:
        The item and whether it was newly created.
    """
    existing = db.execute(
        select(RawFeedbackItem).where(
            RawFeedbackItem.source_type == source_type,
            RawFeedbackItem.external_id == external_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        return existing, False

    item = RawFeedbackItem(
        source_type=source_type,
        external_id=external_id,
        external_url=external_url,
        content=content,
        principal_id=principal_id,
        processing_state=ITEM_STATE_RECEIVED,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    logger.info("Ingested raw feedback item %s from %s:%s", item.id, source_type, external_id)
    return item, True


def get_raw_item(db: Session, item_id: int) -> RawFeedbackItem:
    item = db.get(RawFeedbackItem, item_id)
    if item is None:
        raise NotFoundError("ITEM_NOT_FOUND", f"Raw feedback item with ID {item_id} not found")
    return item


def mark_ready_for_extraction(db: Session, item_id: int) -> RawFeedbackItem:
    """Move a received item into the extraction queue state."""
    item = get_raw_item(db, item_id)
    _require_state(item, ITEM_STATE_RECEIVED)
    _set_state(item, ITEM_STATE_READY)
    db.commit()
    return item


def record_extraction(
    db: Session,
    item_id: int,
    signals: list[ExtractedSignal],
) -> list[FeedbackSignal]:
    """Store extracted signals and move the item to ``extracted``."""
    item = get_raw_item(db, item_id)
    _require_state(item, ITEM_STATE_READY)

    rows = []
    for signal in signals:
        if not 0.0 <= signal.extraction_confidence <= 1.0:
            raise ValidationError(
                "INVALID_SIGNAL", "Extraction confidence must be between 0 and 1"
            )
        row = FeedbackSignal(
            raw_feedback_item_id=item.id,
            signal_type=signal.signal_type,
            summary=signal.summary,
            implicit_need=signal.implicit_need,
            evidence=list(signal.evidence),
            board_id=signal.board_id,
            extraction_confidence=signal.extraction_confidence,
        )
        db.add(row)
        rows.append(row)

    item.attempt_count += 1
    _set_state(item, ITEM_STATE_EXTRACTED)
    db.commit()
    logger.info("Recorded %d signals for raw feedback item %s", len(rows), item_id)
    return rows


def record_extraction_failure(db: Session, item_id: int, error: str) -> RawFeedbackItem:
    """Mark an item failed after the extractor gave up on it."""
    item = get_raw_item(db, item_id)
    item.attempt_count += 1
    _fail(item, error)
    db.commit()
    return item


async def generate_suggestions(
    db: Session,
    item_id: int,
    search: SimilarPostFinder,
) -> list[FeedbackSuggestion]:
    """Turn an extracted item's signals into pending suggestions.

    Any error marks the item ``failed`` with the message and is re-raised.
    """
    item = get_raw_item(db, item_id)
    _require_state(item, ITEM_STATE_EXTRACTED)

    try:
        created = await _generate(db, item, search)
    except Exception as exc:
        db.rollback()
        item = get_raw_item(db, item_id)
        _fail(item, str(exc))
        db.commit()
        logger.warning("Suggestion generation failed for item %s: %s", item_id, exc)
        raise

    _set_state(item, ITEM_STATE_COMPLETED)
    item.processed_at = utcnow()
    item.last_error = None
    db.commit()
    logger.info("Generated %d suggestions for raw feedback item %s", len(created), item_id)
    return created


async def _generate(
    db: Session,
    item: RawFeedbackItem,
    search: SimilarPostFinder,
) -> list[FeedbackSuggestion]:
    signals = db.execute(
        select(FeedbackSignal)
        .where(FeedbackSignal.raw_feedback_item_id == item.id)
        .order_by(FeedbackSignal.id)
    ).scalars().all()

    source_post_id = item.source_post_id
    excluded = [source_post_id] if source_post_id is not None else []
    # Targets that already have a pending suggestion for this item.
    taken = set(
        db.execute(
            select(FeedbackSuggestion.target_post_id).where(
                FeedbackSuggestion.raw_feedback_item_id == item.id,
                FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING,
                FeedbackSuggestion.target_post_id.is_not(None),
            )
        ).scalars()
    )

    created: list[FeedbackSuggestion] = []
    for signal in signals:
        query_text = " ".join(part for part in (signal.summary, signal.implicit_need) if part)
        candidates = await search.find_similar(
            query_text, SIMILAR_CANDIDATES_PER_SIGNAL, exclude_post_ids=excluded
        )

        merges = 0
        for candidate in candidates:
            if candidate.score < MERGE_SUGGESTION_THRESHOLD:
                continue
            target_id = candidate.canonical_post_id or candidate.post_id
            if target_id == source_post_id or target_id in taken:
                continue
            suggestion = FeedbackSuggestion(
                suggestion_type=SUGGESTION_TYPE_MERGE,
                raw_feedback_item_id=item.id,
                signal_id=signal.id,
                board_id=signal.board_id,
                target_post_id=target_id,
                similarity_score=candidate.score,
                reasoning=f'Matches "{candidate.title}" ({candidate.match_strength} match)',
            )
            db.add(suggestion)
            created.append(suggestion)
            taken.add(target_id)
            merges += 1
            if merges >= MAX_MERGE_SUGGESTIONS_PER_SIGNAL:
                break

        if merges == 0 and source_post_id is None:
            suggestion = FeedbackSuggestion(
                suggestion_type=SUGGESTION_TYPE_CREATE,
                raw_feedback_item_id=item.id,
                signal_id=signal.id,
                board_id=signal.board_id,
                suggested_title=signal.summary.strip()[:MAX_SUGGESTED_TITLE_LENGTH],
                suggested_body=_item_text(item) or signal.implicit_need or signal.summary,
                reasoning=signal.implicit_need,
            )
            db.add(suggestion)
            created.append(suggestion)

    db.flush()
    return created


def retry_failed_item(
    db: Session,
    item_id: int,
    queue: ExtractionQueue | None = None,
) -> RawFeedbackItem:
    """Put a failed item back in the extraction queue."""
    item = get_raw_item(db, item_id)
    _require_state(item, ITEM_STATE_FAILED)
    _reset_for_retry(item)
    db.commit()
    (queue or LoggingExtractionQueue()).enqueue(item.id)
    return item


def retry_all_failed(db: Session, queue: ExtractionQueue | None = None) -> int:
    """Requeue every failed item and return how many were requeued."""
    items = db.execute(
        select(RawFeedbackItem)
        .where(RawFeedbackItem.processing_state == ITEM_STATE_FAILED)
        .order_by(RawFeedbackItem.id)
    ).scalars().all()
    for item in items:
        _reset_for_retry(item)
    db.commit()

    queue = queue or LoggingExtractionQueue()
    for item in items:
        queue.enqueue(item.id)
    if items:
        logger.info("Requeued %d failed raw feedback items", len(items))
    return len(items)


def pipeline_stats(db: Session) -> dict[str, int]:
    """Count raw items per processing state plus pending suggestions."""
    stats = {
        state: 0
        for state in (
            ITEM_STATE_RECEIVED,
            ITEM_STATE_READY,
            ITEM_STATE_EXTRACTED,
            ITEM_STATE_COMPLETED,
            ITEM_STATE_FAILED,
        )
    }
    rows = db.execute(
        select(RawFeedbackItem.processing_state, func.count(RawFeedbackItem.id)).group_by(
            RawFeedbackItem.processing_state
        )
    ).all()
    for state, count in rows:
        stats[state] = int(count)
    stats["pending_suggestions"] = int(
        db.execute(
            select(func.count(FeedbackSuggestion.id)).where(
                FeedbackSuggestion.status == SUGGESTION_STATUS_PENDING
            )
        ).scalar_one()
    )
    return stats


def _item_text(item: RawFeedbackItem) -> str:
    content = item.content or {}
    parts = [str(content.get(key) or "").strip() for key in ("subject", "text")]
    return "\n\n".join(part for part in parts if part)


def _require_state(item: RawFeedbackItem, expected: str) -> None:
    if item.processing_state != expected:
        raise ValidationError(
            "INVALID_STATE",
            f"Raw feedback item {item.id} is {item.processing_state}, expected {expected}",
        )


def _set_state(item: RawFeedbackItem, state: str) -> None:
    item.processing_state = state
    item.state_changed_at = utcnow()


def _fail(item: RawFeedbackItem, error: str) -> None:
    _set_state(item, ITEM_STATE_FAILED)
    item.last_error = error[:MAX_ERROR_LENGTH]


def _reset_for_retry(item: RawFeedbackItem) -> None:
    _set_state(item, ITEM_STATE_READY)
    item.last_error = None
