# tests/v1/test_suggestion_endpoints.py
"""Tests for suggestion triage endpoints."""

import pytest
from fastapi import status

from feedback_portal.models import FeedbackSuggestion, Post, RawFeedbackItem
from feedback_portal.models.feedback import (
    ITEM_STATE_COMPLETED,
    SUGGESTION_TYPE_CREATE,
    SUGGESTION_TYPE_MERGE,
)


@pytest.fixture()
def item(db_session, make_principal):
    raw = RawFeedbackItem(
        source_type="zendesk",
        external_id="ticket-42",
        content={"text": "Dark mode would be great"},
        principal_id=make_principal("Customer").id,
        processing_state=ITEM_STATE_COMPLETED,
    )
    db_session.add(raw)
    db_session.commit()
    return raw


@pytest.fixture()
def suggestions(db_session, board, item, make_post):
    merge = FeedbackSuggestion(
        suggestion_type=SUGGESTION_TYPE_MERGE,
        raw_feedback_item_id=item.id,
        board_id=board.id,
        target_post_id=make_post("Dark mode").id,
        similarity_score=0.88,
    )
    create = FeedbackSuggestion(
        suggestion_type=SUGGESTION_TYPE_CREATE,
        raw_feedback_item_id=item.id,
        board_id=board.id,
        suggested_title="Dark mode for mobile",
        suggested_body="From support",
    )
    db_session.add_all([merge, create])
    db_session.commit()
    return {"merge": merge, "create": create}


def test_list_and_stats(client, suggestions, team_member, auth_headers) -> None:
    headers = auth_headers(team_member)

    page = client.get("/api/v1/suggestions/", headers=headers).json()
    assert page["total"] == 2
    assert {s["id"] for s in page["items"]} == {s.id for s in suggestions.values()}

    merges = client.get(
        "/api/v1/suggestions/", params={"type": "merge_post", "sort": "similarity"}, headers=headers
    ).json()
    assert [s["id"] for s in merges["items"]] == [suggestions["merge"].id]

    stats = client.get("/api/v1/suggestions/stats", headers=headers).json()
    assert stats == {"merge_post": 1, "create_post": 1, "total": 2}


def test_suggestions_require_team_member(client, suggestions, make_principal, auth_headers) -> None:
    response = client.get(
        "/api/v1/suggestions/", headers=auth_headers(make_principal("Customer"))
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN


def test_accept_create_with_edits(client, db_session, suggestions, team_member, auth_headers) -> None:
    headers = auth_headers(team_member)
    suggestion = suggestions["create"]

    response = client.post(
        f"/api/v1/suggestions/{suggestion.id}/accept",
        json={"title": "Mobile dark mode"},
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK
    post_id = response.json()["result_post_id"]

    post = client.get(f"/api/v1/posts/{post_id}").json()
    assert post["title"] == "Mobile dark mode"
    assert post["vote_count"] == 1

    detail = client.get(f"/api/v1/suggestions/{suggestion.id}", headers=headers).json()
    assert detail["status"] == "accepted"
    assert detail["result_post_id"] == post_id

    again = client.post(f"/api/v1/suggestions/{suggestion.id}/accept", headers=headers)
    assert again.status_code == status.HTTP_400_BAD_REQUEST
    assert again.json()["detail"]["code"] == "SUGGESTION_RESOLVED"


def test_accept_merge_without_body(client, suggestions, team_member, auth_headers) -> None:
    suggestion = suggestions["merge"]
    response = client.post(
        f"/api/v1/suggestions/{suggestion.id}/accept", headers=auth_headers(team_member)
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["result_post_id"] == suggestion.target_post_id


def test_dismiss_and_missing(client, suggestions, team_member, auth_headers) -> None:
    headers = auth_headers(team_member)
    suggestion = suggestions["merge"]

    response = client.post(f"/api/v1/suggestions/{suggestion.id}/dismiss", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "dismissed"

    missing = client.post("/api/v1/suggestions/424242/dismiss", headers=headers)
    assert missing.status_code == status.HTTP_404_NOT_FOUND


def test_expire_endpoint(client, suggestions, team_member, auth_headers) -> None:
    response = client.post("/api/v1/suggestions/expire", headers=auth_headers(team_member))
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"count": 0}


class FixedEmbeddings:
    model = "fixed"

    def __init__(self) -> None:
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float] | None:
        self.texts.append(text)
        return [0.0, 0.0, 1.0]


def test_accepted_create_suggestion_is_embedded(
    client, db_session, suggestions, team_member, auth_headers, override_embedding_provider
) -> None:
    provider = FixedEmbeddings()
    override_embedding_provider(provider)
    headers = auth_headers(team_member)

    created = client.post(
        f"/api/v1/suggestions/{suggestions['create'].id}/accept", headers=headers
    )
    assert created.status_code == status.HTTP_200_OK
    post = db_session.get(Post, created.json()["result_post_id"])
    assert post.embedding == [0.0, 0.0, 1.0]
    assert provider.texts == ["Dark mode for mobile\n\nFrom support"]
