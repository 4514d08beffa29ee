"""Embedding provider and post embedding maintenance.

The provider turns text into a fixed-dimension vector through an
OpenAI-compatible ``/embeddings`` endpoint. It never raises into callers:
a disabled provider, a timeout or an HTTP error all yield ``None`` so that
similarity search can fall back to keyword matching.
"""

from __future__ import annotations

import hashlib
import logging
from collections import OrderedDict
from typing import Protocol

import httpx
from sqlalchemy.orm import Session

from feedback_portal.core.settings import Settings, settings
from feedback_portal.db.time import utcnow
from feedback_portal.models import Post

logger = logging.getLogger(__name__)

# Inputs beyond this many characters are truncated before embedding.
MAX_EMBEDDING_INPUT_CHARS = 8000


class EmbeddingError(RuntimeError):
    """Raised internally when the embedding endpoint returns an unusable response."""


class EmbeddingProvider(Protocol):
    """Anything that can embed text, returning None when it cannot."""

    model: str

    async def embed(self, text: str) -> list[float] | None:
        """Return the embedding for ``text`` or None on failure."""
        ...


class HttpEmbeddingProvider:
    """Embedding provider backed by an OpenAI-compatible HTTP API.

    Results are cached in memory keyed by a SHA-256 of the input, bounded to
    ``cache_size`` entries (least recently used evicted first).
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        dimensions: int,
        timeout_seconds: float = 5.0,
        cache_size: int = 512,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        self._cache: OrderedDict[str, list[float]] = OrderedDict()
        self._cache_size = cache_size

    @classmethod
    def from_settings(cls, config: Settings) -> HttpEmbeddingProvider:
        """Build a provider from application settings."""
        return cls(
            base_url=config.embedding_api_url,
            api_key=config.embedding_api_key or "",
            model=config.embedding_model,
            dimensions=config.embedding_dimensions,
            timeout_seconds=config.embedding_timeout_seconds,
            cache_size=config.embedding_cache_size,
        )

    def _cache_key(self, text: str) -> str:
        return hashlib.sha256(f"{self.model}:{text}".encode()).hexdigest()

    async def embed(self, text: str) -> list[float] | None:
        """Return the embedding for ``text``, or None if it cannot be produced."""
        text = text.strip()[:MAX_EMBEDDING_INPUT_CHARS]
        if not text:
            return None

        key = self._cache_key(text)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        try:
            embedding = await self._request(text)
        except (httpx.HTTPError, EmbeddingError) as exc:
            logger.warning("Embedding request failed: %s", exc)
            return None

        self._cache[key] = embedding
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return embedding

    async def _request(self, text: str) -> list[float]:
        response = await self._client.post(
            "/embeddings",
            json={"model": self.model, "input": text, "dimensions": self.dimensions},
        )
        response.raise_for_status()
        try:
            embedding = response.json()["data"][0]["embedding"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc
        if not isinstance(embedding, list) or len(embedding) != self.dimensions:
            raise EmbeddingError(
                f"Expected {self.dimensions} dimensions, got "
                f"{len(embedding) if isinstance(embedding, list) else type(embedding).__name__}"
            )
        try:
            return [float(value) for value in embedding]
        except (TypeError, ValueError) as exc:
            raise EmbeddingError(f"Non-numeric embedding value: {exc}") from exc

    async def close(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._client.aclose()


def build_embedding_provider(config: Settings = settings) -> EmbeddingProvider | None:
    """Return an embedding provider, or None when AI features are disabled."""
    if not config.vector_search_enabled:
        logger.info("AI features disabled; similarity search will be keyword-only")
        return None
    return HttpEmbeddingProvider.from_settings(config)


def post_embedding_text(post: Post) -> str:
    """Return the text that represents a post in vector space."""
    return f"{post.title}\n\n{post.body}".strip()


async def refresh_post_embedding(
    db: Session,
    provider: EmbeddingProvider | None,
    post_id: int,
) -> bool:
    """Compute and store the embedding for a post.

    Returns:
        True if an embedding was stored; False if the provider is disabled,
        failed, or the post no longer exists.
    """
    if provider is None:
        return False
    post = db.get(Post, post_id)
    if post is None or post.deleted_at is not None:
        return False

    embedding = await provider.embed(post_embedding_text(post))
    if embedding is None:
        return False

    post.embedding = embedding
    post.embedding_model = provider.model
    post.embedding_updated_at = utcnow()
    db.commit()
    return True
