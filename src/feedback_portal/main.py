"""Main entry point for the feedback portal application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from feedback_portal.api.v1 import feedback_router, posts_router, suggestions_router
from feedback_portal.core.settings import settings
from feedback_portal.db.session import SessionLocal
from feedback_portal.services.embeddings import HttpEmbeddingProvider, build_embedding_provider
from feedback_portal.services.similarity import build_similarity_search

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=settings.app_name,
    description="Customer feedback portal with duplicate detection and merging",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(posts_router, prefix="/api/v1")
app.include_router(suggestions_router, prefix="/api/v1")
app.include_router(feedback_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    provider = build_embedding_provider(settings)
    app.state.embedding_provider = provider
    app.state.similarity_search = build_similarity_search(
        SessionLocal, settings, provider=provider
    )
    logger.info(
        "Similarity search ready (vector search %s)",
        "enabled" if provider is not None else "disabled",
    )


@app.on_event("shutdown")
async def on_shutdown() -> None:
    provider = getattr(app.state, "embedding_provider", None)
    if isinstance(provider, HttpEmbeddingProvider):
        await provider.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("feedback_portal.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
