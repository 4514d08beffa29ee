# tests/test_merge.py
"""Tests for the merge engine."""

import pytest
from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError

from feedback_portal.core.errors import (
    ConflictError,
    NotFoundError,
    ValidationError,
    VoteRecountError,
)
from feedback_portal.db.time import utcnow
from feedback_portal.models import Post
from feedback_portal.repositories.post_repo import PostRepository
from feedback_portal.services import merge
from feedback_portal.services.post_service import soft_delete_post


@pytest.fixture()
def voters(make_principal):
    return [make_principal(f"Voter {i}") for i in range(1, 6)]


@pytest.fixture()
def actor(team_member):
    return team_member


@pytest.fixture()
def canonical(make_post, add_votes, voters):
    post = make_post("Dark mode")
    add_votes(post, voters[:3])
    return post


@pytest.fixture()
def duplicate(make_post, add_votes, voters):
    post = make_post("Night theme", author=voters[3])
    add_votes(post, voters[2:4])
    return post


def _distinct_voters(db_session, post_id: int) -> int:
    repo = PostRepository(db_session)
    return len(repo.distinct_voter_ids(repo.related_post_ids(post_id)))


def test_merge_counts_overlapping_voters_once(db_session, canonical, duplicate, actor) -> None:
    """Voters {1,2,3} and {3,4} give the canonical post four distinct voters."""
    result = merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    assert result.canonical_post_id == canonical.id
    assert result.canonical_vote_count == 4
    db_session.refresh(canonical)
    db_session.refresh(duplicate)
    assert canonical.vote_count == 4
    assert canonical.vote_count == _distinct_voters(db_session, canonical.id)
    assert duplicate.canonical_post_id == canonical.id
    assert duplicate.merged_at is not None
    assert duplicate.merged_by_principal_id == actor.id
    # The duplicate keeps its own votes and count.
    assert duplicate.vote_count == 2


def test_merge_into_itself_is_rejected(db_session, canonical, actor) -> None:
    with pytest.raises(ValidationError) as exc:
        merge.merge_post(db_session, canonical.id, canonical.id, actor.id)
    assert exc.value.code == "INVALID_MERGE"


def test_merge_into_a_duplicate_is_rejected(
    db_session, make_post, canonical, duplicate, actor
) -> None:
    """Posts A <- B exist; merging C into B must not build a chain."""
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    third = make_post("Darker colors")

    with pytest.raises(ValidationError) as exc:
        merge.merge_post(db_session, third.id, duplicate.id, actor.id)

    assert exc.value.code == "INVALID_MERGE_TARGET"
    db_session.refresh(third)
    assert third.canonical_post_id is None


def test_merge_already_merged_post_conflicts(
    db_session, make_post, canonical, duplicate, actor
) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    other = make_post("Another target")

    with pytest.raises(ConflictError) as exc:
        merge.merge_post(db_session, duplicate.id, other.id, actor.id)

    assert exc.value.code == "ALREADY_MERGED"
    db_session.refresh(duplicate)
    assert duplicate.canonical_post_id == canonical.id


def test_merge_post_with_own_duplicates_is_rejected(
    db_session, make_post, canonical, duplicate, actor
) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    other = make_post("Unrelated canonical")

    with pytest.raises(ValidationError) as exc:
        merge.merge_post(db_session, canonical.id, other.id, actor.id)
    assert exc.value.code == "HAS_DUPLICATES"


def test_merge_missing_or_deleted_post_is_not_found(
    db_session, canonical, duplicate, actor
) -> None:
    with pytest.raises(NotFoundError):
        merge.merge_post(db_session, 999_999, canonical.id, actor.id)

    soft_delete_post(db_session, canonical.id)
    with pytest.raises(NotFoundError):
        merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)


def test_unmerge_restores_canonical_count(db_session, canonical, duplicate, actor) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    result = merge.unmerge_post(db_session, duplicate.id, actor.id)

    assert result.canonical_post_id == canonical.id
    assert result.canonical_vote_count == 3
    db_session.refresh(duplicate)
    assert duplicate.canonical_post_id is None
    assert duplicate.merged_at is None
    assert duplicate.merged_by_principal_id is None
    assert merge.get_merge_info(db_session, duplicate.id) is None


def test_unmerge_requires_merged_post(db_session, canonical, actor) -> None:
    with pytest.raises(ValidationError) as exc:
        merge.unmerge_post(db_session, canonical.id, actor.id)
    assert exc.value.code == "NOT_MERGED"

    with pytest.raises(NotFoundError):
        merge.unmerge_post(db_session, 424_242, actor.id)


def test_merge_then_unmerge_then_merge_again(db_session, canonical, duplicate, actor) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    merge.unmerge_post(db_session, duplicate.id, actor.id)
    result = merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    assert result.canonical_vote_count == 4


def test_merged_posts_and_merge_info(db_session, canonical, duplicate, actor) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    merged = merge.get_merged_posts(db_session, canonical.id)
    assert [m.id for m in merged] == [duplicate.id]
    assert merged[0].title == "Night theme"
    assert merged[0].author_name == "Voter 4"
    assert merged[0].vote_count == 2

    info = merge.get_merge_info(db_session, duplicate.id)
    assert info is not None
    assert info.canonical_post_id == canonical.id
    assert info.canonical_title == "Dark mode"
    assert info.canonical_board_slug == "features"

    assert merge.get_merge_info(db_session, canonical.id) is None
    assert merge.get_merged_posts(db_session, duplicate.id) == []


def test_comments_span_merge_group(
    db_session, canonical, duplicate, add_comment, actor
) -> None:
    add_comment(canonical, "on canonical")
    add_comment(duplicate, "on duplicate")
    assert merge.count_comments(db_session, canonical.id) == 1

    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    bodies = [c.body for c in merge.list_comments(db_session, canonical.id)]
    assert bodies == ["on canonical", "on duplicate"]
    assert merge.count_comments(db_session, canonical.id) == 2

    merge.unmerge_post(db_session, duplicate.id, actor.id)
    assert merge.count_comments(db_session, canonical.id) == 1


def test_recount_failure_keeps_linkage(
    db_session, canonical, duplicate, actor, mocker
) -> None:
    mocker.patch.object(
        PostRepository,
        "recount_votes",
        side_effect=OperationalError("UPDATE post", {}, Exception("database is locked")),
    )

    with pytest.raises(VoteRecountError) as exc:
        merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    assert exc.value.post_id == canonical.id
    mocker.stopall()

    db_session.refresh(duplicate)
    db_session.refresh(canonical)
    assert duplicate.canonical_post_id == canonical.id
    assert canonical.vote_count == 3

    assert merge.recalculate_vote_count(db_session, canonical.id) == 4
    assert merge.recalculate_vote_count(db_session, canonical.id) == 4


def test_recalculate_unknown_post(db_session) -> None:
    with pytest.raises(NotFoundError):
        merge.recalculate_vote_count(db_session, 31337)


def test_refresh_comment_count_counts_own_comments_only(
    db_session, canonical, duplicate, add_comment, actor
) -> None:
    add_comment(canonical, "one")
    add_comment(canonical, "two")
    add_comment(duplicate, "three")
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    assert merge.refresh_comment_count(db_session, canonical.id) == 2
    db_session.refresh(canonical)
    assert canonical.comment_count == 2

    with pytest.raises(NotFoundError):
        merge.refresh_comment_count(db_session, 31337)


def _stored_canonical(db_session, post_id: int) -> int | None:
    return db_session.execute(
        select(Post.canonical_post_id).where(Post.id == post_id)
    ).scalar_one()


def test_merge_loses_race_to_concurrent_merge(
    db_session, canonical, duplicate, make_post, actor
) -> None:
    winner = make_post("Theme options")
    # Another request merges the duplicate after this session loaded it.
    db_session.execute(
        update(Post)
        .where(Post.id == duplicate.id)
        .values(canonical_post_id=winner.id, merged_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    db_session.commit()
    assert duplicate.canonical_post_id is None

    with pytest.raises(ConflictError) as exc:
        merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)

    assert exc.value.code == "ALREADY_MERGED"
    db_session.rollback()
    assert _stored_canonical(db_session, duplicate.id) == winner.id
    db_session.refresh(canonical)
    assert canonical.vote_count == 3


def test_unmerge_loses_race_to_concurrent_unmerge(
    db_session, canonical, duplicate, actor
) -> None:
    merge.merge_post(db_session, duplicate.id, canonical.id, actor.id)
    db_session.execute(
        update(Post)
        .where(Post.id == duplicate.id)
        .values(canonical_post_id=None, merged_at=None, merged_by_principal_id=None)
        .execution_options(synchronize_session=False)
    )
    db_session.commit()
    assert duplicate.canonical_post_id == canonical.id

    with pytest.raises(ConflictError) as exc:
        merge.unmerge_post(db_session, duplicate.id, actor.id)

    assert exc.value.code == "NOT_MERGED"
    db_session.rollback()
    assert _stored_canonical(db_session, duplicate.id) is None
