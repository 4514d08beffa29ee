"""Typed errors raised by the merge and suggestion services.

The API layer maps these onto HTTP status codes; none of them are retried by
the services themselves.
"""

from __future__ import annotations


class PortalError(RuntimeError):
    """Base exception for caller-visible domain failures.

    Attributes:
        code: Stable machine-readable identifier (e.g. ``ALREADY_MERGED``).
        message: Human-readable explanation.
    """

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class NotFoundError(PortalError):
    """Raised when a referenced post, suggestion or feedback item does not exist."""


class ValidationError(PortalError):
    """Raised for requests that can never succeed as issued.

    Covers self-merges, merging into a duplicate, resolving an already
    resolved suggestion and malformed input.
    """


class ConflictError(PortalError):
    """Raised when the current state changed underneath the caller.

    Covers already-merged duplicates and lost compare-and-set races.
    """


class VoteRecountError(PortalError):
    """Raised when a merge linkage change committed but the vote recount failed.

    The linkage stands; call ``recalculate_vote_count`` for ``post_id`` again.
    """

    def __init__(self, post_id: int, message: str | None = None) -> None:
        super().__init__(
            "VOTE_RECOUNT_FAILED",
            message or f"Vote count for post {post_id} could not be recalculated",
        )
        self.post_id = post_id
