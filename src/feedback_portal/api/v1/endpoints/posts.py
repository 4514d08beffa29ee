"""Post, vote, comment and merge endpoints."""

from fastapi import APIRouter, HTTPException, Query, status

from feedback_portal.api.v1.dependencies import (
    ContextDep,
    EmbeddingProviderDep,
    SessionDep,
    SimilaritySearchDep,
    TeamContextDep,
    http_error,
)
from feedback_portal.core.errors import PortalError
from feedback_portal.core.settings import settings
from feedback_portal.models import Comment, Post
from feedback_portal.repositories.post_repo import MergedPostSummary, PostMergeInfo
from feedback_portal.schemas.post import (
    CommentCreate,
    CommentResponse,
    MergedPostResponse,
    MergeInfoResponse,
    MergeRequest,
    MergeResponse,
    PostCreate,
    PostResponse,
    SimilarPostResponse,
    UnmergeResponse,
    VoteCountResponse,
    VoteToggleResponse,
)
from feedback_portal.services import merge, post_service
from feedback_portal.services.embeddings import refresh_post_embedding
from feedback_portal.services.similarity import SimilarPost

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("/", response_model=PostResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    payload: PostCreate, ctx: ContextDep, provider: EmbeddingProviderDep
) -> Post:
    """Create a post authored by the caller and embed it for similarity search."""
    try:
        post = post_service.create_post(
            ctx.db,
            board_id=payload.board_id,
            principal_id=ctx.actor_id,
            title=payload.title,
            body=payload.body,
            content_json=payload.content_json,
        )
    except PortalError as err:
        raise http_error(err) from err
    await refresh_post_embedding(ctx.db, provider, post.id)
    return post


@router.get("/similar", response_model=list[SimilarPostResponse])
async def find_similar_posts(
    search: SimilaritySearchDep,
    q: str = Query(..., min_length=1, max_length=1000, description="Text to match"),
    limit: int = Query(settings.similar_posts_limit, ge=1, le=20),
) -> list[SimilarPost]:
    """Return posts similar to free text, for "did you mean" while composing."""
    return await search.find_similar(q, limit)


@router.get("/{post_id}", response_model=PostResponse)
async def get_post(post_id: int, db: SessionDep) -> Post:
    """Return a single non-deleted post."""
    post = db.get(Post, post_id)
    if post is None or post.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    return post


@router.get("/{post_id}/similar", response_model=list[SimilarPostResponse])
async def find_posts_similar_to_post(
    post_id: int,
    db: SessionDep,
    search: SimilaritySearchDep,
    limit: int = Query(settings.similar_posts_limit, ge=1, le=20),
) -> list[SimilarPost]:
    """Return merge candidates for an existing post, excluding the post itself."""
    post = db.get(Post, post_id)
    if post is None or post.deleted_at is not None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Post not found")
    query_text = f"{post.title} {post.body}"
    return await search.find_similar(query_text, limit, exclude_post_ids=[post_id])


@router.delete("/{post_id}", response_model=PostResponse)
async def delete_post(post_id: int, ctx: TeamContextDep) -> Post:
    """Soft-delete a post."""
    try:
        return post_service.soft_delete_post(ctx.db, post_id)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/{post_id}/restore", response_model=PostResponse)
async def restore_post(post_id: int, ctx: TeamContextDep) -> Post:
    """Undo a soft delete."""
    try:
        return post_service.restore_post(ctx.db, post_id)
    except PortalError as err:
        raise http_error(err) from err


@router.post("/{post_id}/vote", response_model=VoteToggleResponse)
async def toggle_vote(post_id: int, ctx: ContextDep) -> VoteToggleResponse:
    """Vote on a post, or withdraw the caller's vote if already cast."""
    try:
        result = post_service.toggle_vote(ctx.db, post_id, ctx.actor_id)
    except PortalError as err:
        raise http_error(err) from err
    return VoteToggleResponse(voted=result.voted, vote_count=result.vote_count)


@router.post("/{post_id}/merge", response_model=MergeResponse)
async def merge_post(post_id: int, payload: MergeRequest, ctx: TeamContextDep) -> MergeResponse:
    """Merge this post as a duplicate of ``canonical_post_id``."""
    try:
        result = merge.merge_post(ctx.db, post_id, payload.canonical_post_id, ctx.actor_id)
    except PortalError as err:
        raise http_error(err) from err
    return MergeResponse(
        canonical_post_id=result.canonical_post_id,
        canonical_vote_count=result.canonical_vote_count,
        duplicate_post_id=result.duplicate_post_id,
    )


@router.post("/{post_id}/unmerge", response_model=UnmergeResponse)
async def unmerge_post(post_id: int, ctx: TeamContextDep) -> UnmergeResponse:
    """Restore a merged post to independent state."""
    try:
        result = merge.unmerge_post(ctx.db, post_id, ctx.actor_id)
    except PortalError as err:
        raise http_error(err) from err
    return UnmergeResponse(
        post_id=result.post_id,
        canonical_post_id=result.canonical_post_id,
        canonical_vote_count=result.canonical_vote_count,
    )


@router.post("/{post_id}/recount", response_model=VoteCountResponse)
async def recount_votes(post_id: int, ctx: TeamContextDep) -> VoteCountResponse:
    """Recompute a post's vote count, e.g. after a failed recount."""
    try:
        count = merge.recalculate_vote_count(ctx.db, post_id)
    except PortalError as err:
        raise http_error(err) from err
    return VoteCountResponse(post_id=post_id, vote_count=count)


@router.get("/{post_id}/merged", response_model=list[MergedPostResponse])
async def list_merged_posts(post_id: int, db: SessionDep) -> list[MergedPostSummary]:
    """List the duplicates merged into a canonical post."""
    return merge.get_merged_posts(db, post_id)


@router.get("/{post_id}/merge-info", response_model=MergeInfoResponse | None)
async def get_merge_info(post_id: int, db: SessionDep) -> PostMergeInfo | None:
    """Return where this post was merged to, or null."""
    return merge.get_merge_info(db, post_id)


@router.get("/{post_id}/comments", response_model=list[CommentResponse])
async def list_comments(post_id: int, db: SessionDep) -> list[Comment]:
    """List comments on a post and on its merged duplicates."""
    return merge.list_comments(db, post_id)


@router.post(
    "/{post_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(post_id: int, payload: CommentCreate, ctx: ContextDep) -> Comment:
    """Comment on a post."""
    try:
        return post_service.add_comment(ctx.db, post_id, ctx.actor_id, payload.body)
    except PortalError as err:
        raise http_error(err) from err
