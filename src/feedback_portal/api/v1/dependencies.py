"""Shared API dependencies for authentication, request context and error mapping."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from feedback_portal.core.context import RequestContext
from feedback_portal.core.errors import (
    ConflictError,
    NotFoundError,
    PortalError,
    ValidationError,
    VoteRecountError,
)
from feedback_portal.core.security import decode_principal_id
from feedback_portal.db.session import get_db
from feedback_portal.models import Principal
from feedback_portal.services.embeddings import EmbeddingProvider
from feedback_portal.services.similarity import SimilaritySearch

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

_ERROR_STATUS: dict[type[PortalError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_409_CONFLICT,
    VoteRecountError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def http_error(err: PortalError) -> HTTPException:
    """Translate a domain error into the HTTPException the client sees."""
    status_code = next(
        (code for cls, code in _ERROR_STATUS.items() if isinstance(err, cls)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    return HTTPException(
        status_code=status_code,
        detail={"code": err.code, "message": err.message},
    )


def get_request_context(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> RequestContext:
    """Build the request context for the authenticated principal.

    Raises:
        HTTPException: If the token is invalid or the principal is unknown.
    """
    principal_id = decode_principal_id(credentials.credentials)
    if principal_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    principal = db.get(Principal, principal_id)
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Principal not found",
        )
    return RequestContext(db=db, principal=principal)


ContextDep = Annotated[RequestContext, Depends(get_request_context)]


def require_team_member(ctx: ContextDep) -> RequestContext:
    """Allow only admins and team members through."""
    if not ctx.is_team_member:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Team member access required",
        )
    return ctx


TeamContextDep = Annotated[RequestContext, Depends(require_team_member)]


def get_similarity_search(request: Request) -> SimilaritySearch:
    """Return the similarity search wired at application startup."""
    search: SimilaritySearch | None = getattr(request.app.state, "similarity_search", None)
    if search is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Similarity search is not available",
        )
    return search


SimilaritySearchDep = Annotated[SimilaritySearch, Depends(get_similarity_search)]


def get_embedding_provider(request: Request) -> EmbeddingProvider | None:
    """Return the embedding provider wired at startup, or None when AI is off."""
    return getattr(request.app.state, "embedding_provider", None)


EmbeddingProviderDep = Annotated[EmbeddingProvider | None, Depends(get_embedding_provider)]
