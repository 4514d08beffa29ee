"""Raw feedback ingestion and pipeline endpoints (team members only)."""

from fastapi import APIRouter, Response, status

from feedback_portal.api.v1.dependencies import SimilaritySearchDep, TeamContextDep, http_error
from feedback_portal.core.errors import PortalError
from feedback_portal.models import FeedbackSignal, FeedbackSuggestion, RawFeedbackItem
from feedback_portal.schemas.common import CountResponse
from feedback_portal.schemas.feedback import (
    ExtractionFailure,
    PipelineStatsResponse,
    RawItemCreate,
    RawItemResponse,
    SignalBatch,
    SignalResponse,
)
from feedback_portal.schemas.suggestion import SuggestionResponse
from feedback_portal.services import feedback_pipeline
from feedback_portal.services.feedback_pipeline import ExtractedSignal

router = APIRouter(prefix="/feedback", tags=["feedback"])


@router.post("/items", response_model=RawItemResponse, status_code=status.HTTP_201_CREATED)
async def ingest_item(
    payload: RawItemCreate,
    ctx: TeamContextDep,
    response: Response,
) -> RawFeedbackItem:
    """Ingest a raw item; re-sending the same source identity returns the original."""
    item, created = feedback_pipeline.ingest_raw_item(
        ctx.db,
        source_type=payload.source_type,
        external_id=payload.external_id,
        content=payload.content,
        principal_id=payload.principal_id,
        external_url=payload.external_url,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return item


@router.get("/stats", response_model=PipelineStatsResponse)
async def get_pipeline_stats(ctx: TeamContextDep) -> dict[str, int]:
    return feedback_pipeline.pipeline_stats(ctx.db)


@router.post("/items/retry-failed", response_model=CountResponse)
async def retry_all_failed(ctx: TeamContextDep) -> CountResponse:
    """Requeue every failed item for extraction."""
    return CountResponse(count=feedback_pipeline.retry_all_failed(ctx.db))


@router.get("/items/{item_id}", response_model=RawItemResponse)
async def get_item(item_id: int, ctx: TeamContextDep) -> RawFeedbackItem:
    try:
        return feedback_pipeline.get_raw_item(ctx.db, item_id)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/items/{item_id}/ready", response_model=RawItemResponse)
async def mark_ready(item_id: int, ctx: TeamContextDep) -> RawFeedbackItem:
    try:
        return feedback_pipeline.mark_ready_for_extraction(ctx.db, item_id)
    except PortalError as err:
        raise http_error(err) from err


@router.post(
    "/items/{item_id}/signals",
    response_model=list[SignalResponse],
    status_code=status.HTTP_201_CREATED,
)
async def record_signals(
    item_id: int,
    payload: SignalBatch,
    ctx: TeamContextDep,
) -> list[FeedbackSignal]:
    """Record the extractor's output for an item."""
    signals = [ExtractedSignal(**signal.model_dump()) for signal in payload.signals]
    try:
        return feedback_pipeline.record_extraction(ctx.db, item_id, signals)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/items/{item_id}/failure", response_model=RawItemResponse)
async def record_failure(
    item_id: int,
    payload: ExtractionFailure,
    ctx: TeamContextDep,
) -> RawFeedbackItem:
    try:
        return feedback_pipeline.record_extraction_failure(ctx.db, item_id, payload.error)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/items/{item_id}/suggestions", response_model=list[SuggestionResponse])
async def generate_suggestions(
    item_id: int,
    ctx: TeamContextDep,
    search: SimilaritySearchDep,
) -> list[FeedbackSuggestion]:
    """Generate merge or create suggestions from an extracted item's signals."""
    try:
        return await feedback_pipeline.generate_suggestions(ctx.db, item_id, search)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/items/{item_id}/retry", response_model=RawItemResponse)
async def retry_item(item_id: int, ctx: TeamContextDep) -> RawFeedbackItem:
    try:
        return feedback_pipeline.retry_failed_item(ctx.db, item_id)
    except PortalError as err:
        raise http_error(err) from err
