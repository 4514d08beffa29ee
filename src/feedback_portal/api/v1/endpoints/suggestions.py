"""Feedback suggestion triage endpoints (team members only)."""

from typing import Literal

from fastapi import APIRouter, Query

from feedback_portal.api.v1.dependencies import (
    EmbeddingProviderDep,
    TeamContextDep,
    http_error,
)
from feedback_portal.core.errors import PortalError
from feedback_portal.models import FeedbackSuggestion
from feedback_portal.schemas.common import CountResponse
from feedback_portal.schemas.suggestion import (
    AcceptSuggestionRequest,
    AcceptSuggestionResponse,
    SuggestionPage,
    SuggestionResponse,
    SuggestionStatsResponse,
)
from feedback_portal.services import suggestion_service
from feedback_portal.services.embeddings import refresh_post_embedding
from feedback_portal.services.suggestion_service import SuggestionEdits

router = APIRouter(prefix="/suggestions", tags=["suggestions"])


@router.get("/", response_model=SuggestionPage)
async def list_suggestions(
    ctx: TeamContextDep,
    status_filter: Literal["pending", "accepted", "dismissed", "expired"] = Query(
        "pending", alias="status"
    ),
    suggestion_type: Literal["merge_post", "create_post"] | None = Query(None, alias="type"),
    sort: Literal["newest", "similarity"] = Query("newest"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> SuggestionPage:
    """List suggestions with filters and pagination."""
    items, total = suggestion_service.list_suggestions(
        ctx.db,
        status=status_filter,
        suggestion_type=suggestion_type,
        sort=sort,
        limit=limit,
        offset=offset,
    )
    return SuggestionPage(
        items=[SuggestionResponse.model_validate(item) for item in items],
        total=total,
    )


@router.get("/stats", response_model=SuggestionStatsResponse)
async def get_suggestion_stats(ctx: TeamContextDep) -> dict[str, int]:
    """Return pending suggestion counts by type."""
    return suggestion_service.suggestion_stats(ctx.db)


@router.post("/expire", response_model=CountResponse)
async def expire_suggestions(ctx: TeamContextDep) -> CountResponse:
    """Expire stale pending suggestions."""
    return CountResponse(count=suggestion_service.expire_stale_suggestions(ctx.db))


@router.get("/{suggestion_id}", response_model=SuggestionResponse)
async def get_suggestion(suggestion_id: int, ctx: TeamContextDep) -> FeedbackSuggestion:
    try:
        return suggestion_service.get_suggestion(ctx.db, suggestion_id)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/{suggestion_id}/accept", response_model=AcceptSuggestionResponse)
async def accept_suggestion(
    suggestion_id: int,
    ctx: TeamContextDep,
    provider: EmbeddingProviderDep,
    payload: AcceptSuggestionRequest | None = None,
) -> AcceptSuggestionResponse:
    """Accept a suggestion, merging or creating the post it proposes."""
    edits = None
    if payload is not None:
        edits = SuggestionEdits(
            title=payload.title, body=payload.body, board_id=payload.board_id
        )
    try:
        result = suggestion_service.accept_suggestion(
            ctx.db, suggestion_id, ctx.actor_id, edits
        )
    except PortalError as err:
        raise http_error(err) from err
    if result.created_post:
        await refresh_post_embedding(ctx.db, provider, result.result_post_id)
    return AcceptSuggestionResponse(
        suggestion_id=result.suggestion_id, result_post_id=result.result_post_id
    )


@router.post("/{suggestion_id}/dismiss", response_model=SuggestionResponse)
async def dismiss_suggestion(suggestion_id: int, ctx: TeamContextDep) -> FeedbackSuggestion:
    """Dismiss a suggestion without changing any post."""
    try:
        suggestion_service.dismiss_suggestion(ctx.db, suggestion_id, ctx.actor_id)
        return suggestion_service.get_suggestion(ctx.db, suggestion_id)
    except PortalError as err:
        raise http_error(err) from err
