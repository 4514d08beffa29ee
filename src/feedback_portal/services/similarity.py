"""Hybrid similarity search over posts.

Two independent searches run concurrently and their scores are fused per
post:

- keyword: full-text rank, normalized into [0, 1] with ``min(rank * 2, 1)``
  because the ranking function's typical output range is [0, 0.5];
- vector: cosine similarity between the query embedding and post
  embeddings, kept at or above ``VECTOR_MIN_SIMILARITY``.

A post found by both gets ``min(vector + keyword * KEYWORD_BOOST, 1)``; a post
found by only one keeps that branch's score. Each branch has its own timeout
and degrades to an empty result on failure, so a slow or broken embedding
provider never takes keyword search down with it.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Literal, Protocol

import numpy as np
from sqlalchemy import String, and_, func, literal, select
from sqlalchemy.orm import Session

from feedback_portal.core.settings import Settings, settings
from feedback_portal.models import Post
from feedback_portal.repositories.post_repo import PostRepository, PostSummary
from feedback_portal.services.embeddings import EmbeddingProvider, build_embedding_provider

logger = logging.getLogger(__name__)

VECTOR_MIN_SIMILARITY = 0.35
KEYWORD_BOOST = 0.3
STRONG_MATCH_SCORE = 0.5
GOOD_MATCH_SCORE = 0.4

MatchStrength = Literal["strong", "good", "weak"]
SessionFactory = Callable[[], Session]

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    "a an and are as at be by for from has have i in is it of on or our so that the "
    "this to was we were will with you your".split()
)


@dataclass(frozen=True)
class ScoredPost:
    """A post id with a branch-local score in [0, 1]."""

    post_id: int
    score: float


@dataclass(frozen=True)
class SimilarPost:
    """A fused search result enriched with display fields."""

    post_id: int
    score: float
    match_strength: MatchStrength
    title: str
    vote_count: int
    board_slug: str
    canonical_post_id: int | None = None


def match_strength(score: float) -> MatchStrength:
    """Categorize a fused score: strong >= 0.5, good >= 0.4, otherwise weak."""
    if score >= STRONG_MATCH_SCORE:
        return "strong"
    if score >= GOOD_MATCH_SCORE:
        return "good"
    return "weak"


def normalize_keyword_rank(raw_rank: float) -> float:
    """Map a raw text rank into [0, 1]."""
    return min(max(raw_rank, 0.0) * 2, 1.0)


def fuse_scores(
    keyword_results: Iterable[ScoredPost],
    vector_results: Iterable[ScoredPost],
) -> dict[int, float]:
    """Combine normalized keyword and vector scores per post id."""
    vector_scores = {r.post_id: r.score for r in vector_results}
    keyword_scores = {r.post_id: r.score for r in keyword_results}

    fused: dict[int, float] = {}
    for post_id in vector_scores.keys() | keyword_scores.keys():
        vector_score = vector_scores.get(post_id)
        keyword_score = keyword_scores.get(post_id)
        if vector_score is not None and keyword_score is not None:
            fused[post_id] = min(vector_score + keyword_score * KEYWORD_BOOST, 1.0)
        elif vector_score is not None:
            fused[post_id] = vector_score
        else:
            fused[post_id] = keyword_score  # type: ignore[assignment]
    return fused


def tokenize(text: str) -> list[str]:
    """Lowercase word tokens with common stopwords removed."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in _STOPWORDS]


class KeywordSearcher(Protocol):
    """Full-text search returning normalized scores."""

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        """Return up to ``limit`` posts matching ``query_text``, best first."""
        ...


class VectorSearcher(Protocol):
    """Nearest-neighbour search returning cosine similarities."""

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        """Return up to ``limit`` posts near ``query_text``, best first."""
        ...


class SqlKeywordSearcher:
    """Keyword search against the post table.

    On PostgreSQL this uses ``ts_rank`` with ``plainto_tsquery('english', ...)``.
    Other dialects rank in process: a post matches when it contains every
    query term, and its raw rank is the share of its tokens that are query
    terms, capped at 0.5 to mirror ``ts_rank``'s typical range.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        return await asyncio.to_thread(self._search_sync, query_text, limit)

    def _search_sync(self, query_text: str, limit: int) -> list[ScoredPost]:
        with self._session_factory() as db:
            if db.get_bind().dialect.name == "postgresql":
                rows = self._search_postgres(db, query_text, limit)
            else:
                rows = self._search_fallback(db, query_text, limit)
        return [ScoredPost(post_id, normalize_keyword_rank(rank)) for post_id, rank in rows]

    @staticmethod
    def _search_postgres(db: Session, query_text: str, limit: int) -> list[tuple[int, float]]:
        document = func.to_tsvector(
            literal("english"),
            func.coalesce(Post.title, "") + literal(" ") + func.coalesce(Post.body, ""),
        )
        query = func.plainto_tsquery(literal("english"), query_text)
        rank = func.ts_rank(document, query)
        stmt = (
            select(Post.id, rank.label("rank"))
            .where(Post.deleted_at.is_(None), document.bool_op("@@")(query))
            .order_by(rank.desc(), Post.vote_count.desc())
            .limit(limit)
        )
        return [(row.id, float(row.rank)) for row in db.execute(stmt)]

    @staticmethod
    def _search_fallback(db: Session, query_text: str, limit: int) -> list[tuple[int, float]]:
        terms = sorted(set(tokenize(query_text)))
        if not terms:
            return []
        haystack = func.lower(Post.title + literal(" ") + Post.body, type_=String)
        stmt = select(Post.id, Post.title, Post.body, Post.vote_count).where(
            Post.deleted_at.is_(None),
            and_(*(haystack.contains(term) for term in terms)),
        )
        ranked: list[tuple[int, float, int]] = []
        for row in db.execute(stmt):
            tokens = tokenize(f"{row.title} {row.body}")
            if not tokens or not set(terms) <= set(tokens):
                continue
            hits = sum(1 for token in tokens if token in terms)
            ranked.append((row.id, min(hits / len(tokens), 0.5), row.vote_count))
        ranked.sort(key=lambda item: (-item[1], -item[2], item[0]))
        return [(post_id, rank) for post_id, rank, _ in ranked[:limit]]


class NullVectorSearcher:
    """Vector searcher used when AI features are disabled."""

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        return []


class EmbeddingVectorSearcher:
    """Vector search over stored post embeddings using NumPy cosine similarity."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        session_factory: SessionFactory,
        *,
        min_similarity: float = VECTOR_MIN_SIMILARITY,
    ) -> None:
        self._provider = provider
        self._session_factory = session_factory
        self._min_similarity = min_similarity

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        embedding = await self._provider.embed(query_text)
        if embedding is None:
            return []
        return await asyncio.to_thread(self._rank, embedding, limit)

    def _rank(self, query_embedding: list[float], limit: int) -> list[ScoredPost]:
        # Full scan: every live embedding is loaded and scored in memory, so
        # cost grows linearly with the post table. Move ranking into the
        # database (e.g. pgvector) before this outgrows a single request.
        with self._session_factory() as db:
            rows = db.execute(
                select(Post.id, Post.embedding).where(
                    Post.deleted_at.is_(None),
                    Post.embedding.is_not(None),
                )
            ).all()

        query = np.asarray(query_embedding, dtype=float)
        candidates = [(row.id, row.embedding) for row in rows if row.embedding]
        candidates = [(pid, emb) for pid, emb in candidates if len(emb) == len(query)]
        if not candidates:
            return []

        ids = [pid for pid, _ in candidates]
        matrix = np.asarray([emb for _, emb in candidates], dtype=float)
        scores = batch_cosine_similarity(query, matrix)

        ranked = [
            ScoredPost(post_id, min(float(score), 1.0))
            for post_id, score in zip(ids, scores, strict=True)
            if score >= self._min_similarity
        ]
        ranked.sort(key=lambda r: (-r.score, r.post_id))
        return ranked[:limit]


def batch_cosine_similarity(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between ``query`` and every row of ``matrix``.

    Zero-magnitude vectors score 0.
    """
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(len(matrix))
    row_norms = np.linalg.norm(matrix, axis=1)
    safe_norms = np.where(row_norms == 0, 1, row_norms)
    scores = (matrix @ (query / query_norm)) / safe_norms
    return np.where(row_norms == 0, 0.0, scores)


class SimilaritySearch:
    """Fused keyword + vector search for duplicate candidates."""

    def __init__(
        self,
        keyword_searcher: KeywordSearcher,
        vector_searcher: VectorSearcher,
        session_factory: SessionFactory,
        *,
        keyword_timeout: float = 3.0,
        vector_timeout: float = 8.0,
    ) -> None:
        self._keyword = keyword_searcher
        self._vector = vector_searcher
        self._session_factory = session_factory
        self._keyword_timeout = keyword_timeout
        self._vector_timeout = vector_timeout

    async def find_similar(
        self,
        query_text: str,
        limit: int = 5,
        *,
        exclude_post_ids: Iterable[int] = (),
    ) -> list[SimilarPost]:
        """Return up to ``limit`` posts similar to ``query_text``, best first.

        Soft-deleted posts are never returned. An empty query or no candidates
        on either side yields an empty list.
        """
        query_text = query_text.strip()
        if not query_text or limit <= 0:
            return []

        excluded = set(exclude_post_ids)
        fetch_limit = limit * 2 + len(excluded)

        keyword_results, vector_results = await asyncio.gather(
            self._run_branch("keyword", self._keyword, query_text, fetch_limit,
                             self._keyword_timeout),
            self._run_branch("vector", self._vector, query_text, fetch_limit,
                             self._vector_timeout),
        )
        logger.debug(
            "Similarity search: %d keyword, %d vector candidates",
            len(keyword_results),
            len(vector_results),
        )

        fused = fuse_scores(keyword_results, vector_results)
        ranked = sorted(
            ((pid, score) for pid, score in fused.items() if pid not in excluded),
            key=lambda item: (-item[1], item[0]),
        )[:limit]
        if not ranked:
            return []

        summaries = await asyncio.to_thread(self._load_summaries, [pid for pid, _ in ranked])
        results: list[SimilarPost] = []
        for post_id, score in ranked:
            summary = summaries.get(post_id)
            if summary is None:
                continue
            results.append(
                SimilarPost(
                    post_id=post_id,
                    score=score,
                    match_strength=match_strength(score),
                    title=summary.title,
                    vote_count=summary.vote_count,
                    board_slug=summary.board_slug,
                    canonical_post_id=summary.canonical_post_id,
                )
            )
        return results

    async def _run_branch(
        self,
        name: str,
        searcher: KeywordSearcher | VectorSearcher,
        query_text: str,
        limit: int,
        timeout: float,
    ) -> list[ScoredPost]:
        try:
            return await asyncio.wait_for(searcher.search(query_text, limit), timeout)
        except TimeoutError:
            logger.warning("%s search timed out after %.1fs", name.capitalize(), timeout)
        except Exception:
            # A broken branch only costs its own results.
            logger.exception("%s search failed, continuing without it", name.capitalize())
        return []

    def _load_summaries(self, post_ids: list[int]) -> dict[int, PostSummary]:
        with self._session_factory() as db:
            return PostRepository(db).summaries(post_ids)


def build_vector_searcher(
    session_factory: SessionFactory,
    config: Settings = settings,
    provider: EmbeddingProvider | None = None,
) -> VectorSearcher:
    """Return the embedding searcher, or a null one when AI is disabled."""
    provider = provider if provider is not None else build_embedding_provider(config)
    if provider is None:
        return NullVectorSearcher()
    return EmbeddingVectorSearcher(provider, session_factory)


def build_similarity_search(
    session_factory: SessionFactory,
    config: Settings = settings,
    provider: EmbeddingProvider | None = None,
) -> SimilaritySearch:
    """Wire a SimilaritySearch, resolving the vector capability once."""
    return SimilaritySearch(
        SqlKeywordSearcher(session_factory),
        build_vector_searcher(session_factory, config, provider),
        session_factory,
        keyword_timeout=config.keyword_search_timeout_seconds,
        vector_timeout=config.vector_search_timeout_seconds,
    )
