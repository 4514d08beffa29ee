"""Engine, session factory and declarative base.

Request handlers get a session per request from ``get_db``. Similarity search
opens its own short-lived sessions from ``SessionLocal`` inside worker
threads, so SQLite connections must be shareable across threads.
"""

from __future__ import annotations

from collections.abc import Generator
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from feedback_portal.core.settings import settings


class Base(DeclarativeBase):
    """Declarative base shared by all ORM models."""


# Model modules register their tables on Base.metadata.
import feedback_portal.models  # noqa: E402,F401


def build_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine, enabling foreign keys and thread sharing on SQLite."""
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(url, pool_pre_ping=True, echo=echo, connect_args=connect_args)

    if engine.dialect.name == "sqlite":
        # Merge and suggestion rows rely on ON DELETE CASCADE / SET NULL.
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


engine = build_engine(settings.database_url_sync, echo=settings.sql_debug)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Yield a request-scoped session, closed when the request ends."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
