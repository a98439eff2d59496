from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from conftest import FakeGenerator

from coursepilot.config import settings
from coursepilot.models.domain.canvas_domain import AssignmentRow, CourseCard
from coursepilot.models.domain.chat_domain import Conversation, ConversationTurn
from coursepilot.services.vector_store import (
    VectorStore,
    VectorStoreError,
    build_filter,
    stable_point_id,
)


def make_store(client=None) -> tuple[VectorStore, AsyncMock]:
    client = client or AsyncMock()
    client.collection_exists.return_value = True
    return VectorStore(client=client, embedder=FakeGenerator()), client


def test_build_filter_skips_missing_values():
    query_filter = build_filter({"user_id": "u1", "scope_id": None})

    assert len(query_filter.must) == 1
    assert query_filter.must[0].key == "user_id"
    assert query_filter.must[0].match.value == "u1"
    assert build_filter({"scope_id": None}) is None


def test_stable_point_id_is_deterministic():
    assert stable_point_id("canvas:u1:assignment:5") == stable_point_id("canvas:u1:assignment:5")
    assert stable_point_id("canvas:u1:assignment:5") != stable_point_id("canvas:u1:assignment:6")


@pytest.mark.asyncio
async def test_search_maps_points_to_documents():
    store, client = make_store()
    client.query_points.return_value = SimpleNamespace(
        points=[
            SimpleNamespace(
                score=0.91,
                payload={"title": "PS5", "text": "Problem set 5", "category": "assignment", "scope_id": 422},
            )
        ]
    )

    documents = await store.search("canvas_content", "ps5", 5, {"user_id": "u1", "scope_id": "422"})

    assert documents[0].title == "PS5"
    assert documents[0].scope_id == "422"
    assert documents[0].score == 0.91
    kwargs = client.query_points.call_args.kwargs
    assert kwargs["limit"] == 5
    assert {c.key for c in kwargs["query_filter"].must} == {"user_id", "scope_id"}


@pytest.mark.asyncio
async def test_search_wraps_errors():
    store, client = make_store()
    client.query_points.side_effect = RuntimeError("qdrant down")

    with pytest.raises(VectorStoreError):
        await store.search("canvas_content", "ps5", 5, {"user_id": "u1"})


@pytest.mark.asyncio
async def test_search_with_empty_query_does_nothing():
    store, client = make_store()

    assert await store.search("canvas_content", "   ", 5, {"user_id": "u1"}) == []
    client.query_points.assert_not_called()


@pytest.mark.asyncio
async def test_index_conversation_pairs_user_and_assistant_turns():
    store, client = make_store()
    now = datetime.now(UTC)
    conversation = Conversation(id="c1", user_id="u1", scope_id="422", title="PS5", created_at=now, updated_at=now)
    turns = [
        ConversationTurn("c1", "user", "When is PS5 due?", now),
        ConversationTurn("c1", "assistant", "Friday.", now),
        ConversationTurn("c1", "user", "Thanks", now),
    ]

    written = await store.index_conversation(conversation, turns)

    assert written == 1
    points = client.upsert.call_args.kwargs["points"]
    assert points[0].payload["text"] == "Q: When is PS5 due?\nA: Friday."
    assert points[0].payload["user_id"] == "u1"
    assert client.upsert.call_args.kwargs["collection_name"] == settings.QDRANT_CHAT_COLLECTION


@pytest.mark.asyncio
async def test_index_canvas_content_strips_html_and_creates_collection():
    store, client = make_store()
    client.collection_exists.return_value = False
    card = CourseCard(id=422, name="Machine Learning", course_code="CMSC422")
    row = AssignmentRow.from_canvas(
        {"id": 5, "name": "PS5", "description": "<p>Implement <b>SGD</b></p>", "due_at": "2026-03-01T00:00:00Z"},
        card,
    )

    written = await store.index_canvas_content("u1", assignments=[row])

    assert written == 1
    client.create_collection.assert_awaited_once()
    point = client.upsert.call_args.kwargs["points"][0]
    assert point.payload["text"] == "Implement SGD"
    assert point.payload["scope_id"] == "422"
    assert point.id == stable_point_id("canvas:u1:assignment:5")
