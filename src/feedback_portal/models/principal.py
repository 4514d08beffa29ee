"""Principals and boards referenced by posts."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from feedback_portal.db.session import Base
from feedback_portal.db.time import utcnow

PRINCIPAL_ROLE_ADMIN = "admin"
PRINCIPAL_ROLE_MEMBER = "member"
PRINCIPAL_ROLE_USER = "user"


class Principal(Base):
    """An actor: portal user, team member or admin.

    Merge and resolution audit fields store the principal id verbatim.
    """

    __tablename__ = "principal"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    role: Mapped[str] = mapped_column(Text, nullable=False, default=PRINCIPAL_ROLE_USER)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Board(Base):
    """A feedback board that groups posts."""

    __tablename__ = "board"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
