# tests/test_similarity.py
"""Tests for hybrid keyword + vector similarity search."""

import asyncio

import numpy as np
import pytest

from feedback_portal.core.settings import Settings
from feedback_portal.db.time import utcnow
from feedback_portal.models import Board, Post
from feedback_portal.services.similarity import (
    EmbeddingVectorSearcher,
    NullVectorSearcher,
    ScoredPost,
    SimilaritySearch,
    SqlKeywordSearcher,
    batch_cosine_similarity,
    build_similarity_search,
    build_vector_searcher,
    fuse_scores,
    match_strength,
    normalize_keyword_rank,
    tokenize,
)


class FakeEmbeddingProvider:
    """Maps known query strings to fixed vectors."""

    model = "fake-embedding"

    def __init__(self, vectors: dict[str, list[float]]) -> None:
        self.vectors = vectors
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float] | None:
        self.calls.append(text)
        return self.vectors.get(text)


class StaticSearcher:
    def __init__(self, results: list[ScoredPost]) -> None:
        self.results = results

    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        return self.results[:limit]


class FailingSearcher:
    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        raise RuntimeError("embedding backend unavailable")


class BrokenSearcher:
    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        raise TypeError("unsupported operand")


class SlowSearcher:
    async def search(self, query_text: str, limit: int) -> list[ScoredPost]:
        await asyncio.sleep(1.0)
        return [ScoredPost(1, 0.99)]


@pytest.fixture()
def seeded(file_session_factory):
    """Commit a board and a handful of posts to the file-backed database."""
    with file_session_factory() as db:
        board = Board(slug="ideas", name="Ideas")
        db.add(board)
        db.flush()
        posts = {
            "night": Post(board_id=board.id, title="Night theme", body="Easier on the eyes",
                          embedding=[1.0, 0.0, 0.0]),
            "csv": Post(board_id=board.id, title="Export to CSV", body="Download reports",
                        embedding=[0.0, 1.0, 0.0]),
            "dark": Post(board_id=board.id, title="Dark mode for the dashboard", body="",
                         embedding=[0.6, 0.0, 0.8]),
            "deleted": Post(board_id=board.id, title="Dark mode everywhere", body="",
                            embedding=[1.0, 0.0, 0.0], deleted_at=utcnow()),
        }
        db.add_all(posts.values())
        db.commit()
        return {key: post.id for key, post in posts.items()}


def _search(session_factory, vector_searcher=None, **kwargs) -> SimilaritySearch:
    return SimilaritySearch(
        SqlKeywordSearcher(session_factory),
        vector_searcher or NullVectorSearcher(),
        session_factory,
        **kwargs,
    )


def test_match_strength_bands() -> None:
    assert match_strength(0.5) == "strong"
    assert match_strength(0.49) == "good"
    assert match_strength(0.4) == "good"
    assert match_strength(0.39) == "weak"


def test_keyword_rank_normalization_is_capped() -> None:
    assert normalize_keyword_rank(0.1) == pytest.approx(0.2)
    assert normalize_keyword_rank(0.7) == 1.0
    assert normalize_keyword_rank(-0.2) == 0.0


def test_fuse_scores_boosts_posts_found_by_both() -> None:
    fused = fuse_scores(
        [ScoredPost(1, 0.5), ScoredPost(3, 0.8)],
        [ScoredPost(1, 0.6), ScoredPost(2, 0.45)],
    )
    assert fused[1] == pytest.approx(0.6 + 0.5 * 0.3)
    assert fused[2] == pytest.approx(0.45)
    assert fused[3] == pytest.approx(0.8)
    assert fuse_scores([ScoredPost(1, 1.0)], [ScoredPost(1, 0.95)])[1] == 1.0


def test_batch_cosine_similarity_handles_zero_vectors() -> None:
    scores = batch_cosine_similarity(
        np.array([1.0, 0.0]),
        np.array([[2.0, 0.0], [0.0, 3.0], [0.0, 0.0]]),
    )
    assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0])
    assert batch_cosine_similarity(np.zeros(2), np.ones((2, 2))).tolist() == [0.0, 0.0]


def test_tokenize_drops_stopwords() -> None:
    assert tokenize("Add a Dark-Mode to the app!") == ["add", "dark", "mode", "app"]


async def test_vector_only_match_for_synonyms(file_session_factory, seeded) -> None:
    """A "dark mode" query finds "Night theme" through embeddings alone."""
    provider = FakeEmbeddingProvider({"dark mode": [0.9, 0.1, 0.0]})
    search = _search(file_session_factory, EmbeddingVectorSearcher(provider, file_session_factory))

    results = await search.find_similar("dark mode", limit=5)

    assert results[0].post_id == seeded["night"]
    assert results[0].match_strength == "strong"
    assert results[0].title == "Night theme"
    assert results[0].board_slug == "ideas"
    assert seeded["deleted"] not in [r.post_id for r in results]
    assert seeded["csv"] not in [r.post_id for r in results]


async def test_keyword_only_when_vector_disabled(file_session_factory, seeded) -> None:
    search = _search(file_session_factory)

    results = await search.find_similar("dark mode", limit=5)

    assert [r.post_id for r in results] == [seeded["dark"]]
    assert results[0].score == pytest.approx(1.0)


async def test_fused_score_for_post_found_by_both(file_session_factory, seeded) -> None:
    provider = FakeEmbeddingProvider({"dashboard": [0.0, 0.0, 1.0]})
    search = _search(file_session_factory, EmbeddingVectorSearcher(provider, file_session_factory))

    results = await search.find_similar("dashboard", limit=5)

    # Vector 0.8; keyword rank 1/3 normalizes to 2/3.
    assert results[0].post_id == seeded["dark"]
    assert results[0].score == pytest.approx(min(0.8 + (2 / 3) * 0.3, 1.0))


async def test_results_sorted_limited_and_excluded(file_session_factory, seeded) -> None:
    vector = StaticSearcher(
        [
            ScoredPost(seeded["night"], 0.9),
            ScoredPost(seeded["dark"], 0.7),
            ScoredPost(seeded["csv"], 0.5),
        ]
    )
    search = _search(file_session_factory, vector)

    top = await search.find_similar("anything at all", limit=2)
    assert [r.post_id for r in top] == [seeded["night"], seeded["dark"]]

    excluded = await search.find_similar(
        "anything at all", limit=2, exclude_post_ids=[seeded["night"]]
    )
    assert [r.post_id for r in excluded] == [seeded["dark"], seeded["csv"]]
    assert all(0.0 <= r.score <= 1.0 for r in excluded)


async def test_failing_vector_branch_degrades_to_keyword(file_session_factory, seeded) -> None:
    search = _search(file_session_factory, FailingSearcher())

    results = await search.find_similar("dark mode", limit=5)

    assert [r.post_id for r in results] == [seeded["dark"]]


async def test_unexpected_branch_error_only_drops_that_branch(
    file_session_factory, seeded
) -> None:
    search = _search(file_session_factory, BrokenSearcher())

    results = await search.find_similar("dark mode", limit=5)

    assert [r.post_id for r in results] == [seeded["dark"]]


async def test_slow_vector_branch_times_out(file_session_factory, seeded) -> None:
    search = _search(file_session_factory, SlowSearcher(), vector_timeout=0.05)

    results = await search.find_similar("dark mode", limit=5)

    assert [r.post_id for r in results] == [seeded["dark"]]


async def test_empty_query_returns_nothing(file_session_factory, seeded) -> None:
    search = _search(file_session_factory, StaticSearcher([ScoredPost(seeded["night"], 0.9)]))
    assert await search.find_similar("   ", limit=5) == []
    assert await search.find_similar("dark mode", limit=0) == []


async def test_embedding_failure_returns_no_vector_candidates(file_session_factory, seeded) -> None:
    provider = FakeEmbeddingProvider({})
    searcher = EmbeddingVectorSearcher(provider, file_session_factory)
    assert await searcher.search("unknown text", 5) == []
    assert provider.calls == ["unknown text"]


def test_build_similarity_search_without_ai(file_session_factory) -> None:
    config = Settings(SECRET_KEY="x", AI_ENABLED=False)
    search = build_similarity_search(file_session_factory, config)
    assert isinstance(search._vector, NullVectorSearcher)

    provider = FakeEmbeddingProvider({})
    search = build_similarity_search(file_session_factory, config, provider=provider)
    assert isinstance(search._vector, EmbeddingVectorSearcher)


def test_build_vector_searcher_resolves_capability(file_session_factory) -> None:
    disabled = Settings(SECRET_KEY="x", AI_ENABLED=False)
    assert isinstance(build_vector_searcher(file_session_factory, disabled), NullVectorSearcher)

    no_key = Settings(SECRET_KEY="x", AI_ENABLED=True)
    assert isinstance(build_vector_searcher(file_session_factory, no_key), NullVectorSearcher)

    enabled = Settings(SECRET_KEY="x", AI_ENABLED=True, EMBEDDING_API_KEY="sk-live")
    assert isinstance(build_vector_searcher(file_session_factory, enabled), EmbeddingVectorSearcher)
