# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-feedback-portal")
os.environ.setdefault("AI_ENABLED", "false")

from feedback_portal.api.v1.dependencies import get_embedding_provider, get_similarity_search
from feedback_portal.core.security import create_access_token
from feedback_portal.db.session import Base
from feedback_portal.db.session import get_db as app_get_session
from feedback_portal.main import app as fastapi_app
from feedback_portal.models import Board, Comment, Post, Principal, Vote
from feedback_portal.models.principal import PRINCIPAL_ROLE_MEMBER, PRINCIPAL_ROLE_USER
from feedback_portal.services.embeddings import EmbeddingProvider
from feedback_portal.services.similarity import SimilaritySearch

TEST_DB_URL = "sqlite://"


def _enable_sqlite_savepoints(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINTs nest correctly."""

    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    """Session whose commits land in a savepoint of an outer, rolled-back transaction."""
    connection = engine.connect()
    transaction = connection.begin()
    session = Session(
        bind=connection,
        autoflush=False,
        expire_on_commit=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        if transaction.is_active:
            transaction.rollback()
        connection.close()


@pytest.fixture()
def file_engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """A file-backed database for code that opens its own sessions in worker threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'search.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture()
def file_session_factory(file_engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def override_similarity_search(app: FastAPI) -> Iterator[Callable[[SimilaritySearch], None]]:
    """Install a similarity search for the API under test."""

    def _install(search: SimilaritySearch) -> None:
        app.dependency_overrides[get_similarity_search] = lambda: search

    try:
        yield _install
    finally:
        app.dependency_overrides.pop(get_similarity_search, None)


@pytest.fixture()
def override_embedding_provider(app: FastAPI) -> Iterator[Callable[[EmbeddingProvider], None]]:
    """Install an embedding provider for the API under test."""

    def _install(provider: EmbeddingProvider) -> None:
        app.dependency_overrides[get_embedding_provider] = lambda: provider

    try:
        yield _install
    finally:
        app.dependency_overrides.pop(get_embedding_provider, None)


@pytest.fixture()
def make_principal(db_session: Session) -> Callable[..., Principal]:
    def _make(name: str = "User", role: str = PRINCIPAL_ROLE_USER) -> Principal:
        principal = Principal(display_name=name, role=role)
        db_session.add(principal)
        db_session.commit()
        return principal

    return _make


@pytest.fixture()
def team_member(make_principal: Callable[..., Principal]) -> Principal:
    return make_principal("Team Member", PRINCIPAL_ROLE_MEMBER)


@pytest.fixture()
def board(db_session: Session) -> Board:
    board = Board(slug="features", name="Feature Requests")
    db_session.add(board)
    db_session.commit()
    return board


@pytest.fixture()
def make_post(db_session: Session, board: Board) -> Callable[..., Post]:
    def _make(
        title: str = "A post",
        body: str = "",
        *,
        author: Principal | None = None,
        embedding: list[float] | None = None,
    ) -> Post:
        post = Post(
            board_id=board.id,
            principal_id=author.id if author else None,
            title=title,
            body=body,
            embedding=embedding,
        )
        db_session.add(post)
        db_session.commit()
        return post

    return _make


@pytest.fixture()
def add_votes(db_session: Session) -> Callable[[Post, list[Principal]], None]:
    """Insert vote rows and set the post's own count to match."""

    def _add(post: Post, voters: list[Principal]) -> None:
        for voter in voters:
            db_session.add(Vote(post_id=post.id, principal_id=voter.id))
        post.vote_count = len(voters)
        db_session.commit()

    return _add


@pytest.fixture()
def add_comment(db_session: Session) -> Callable[[Post, str], Comment]:
    def _add(post: Post, body: str) -> Comment:
        comment = Comment(post_id=post.id, body=body)
        db_session.add(comment)
        db_session.commit()
        return comment

    return _add


@pytest.fixture()
def auth_headers() -> Callable[[Principal], dict[str, str]]:
    def _headers(principal: Principal) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(principal.id)}"}

    return _headers
