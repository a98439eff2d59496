from datetime import timedelta

import pytest

from coursepilot.db.helpers import DatabaseError
from coursepilot.models.domain.recording_domain import RecordingStatus
from coursepilot.repositories.conversation_repository import InMemoryConversationStore
from coursepilot.repositories.recording_repository import InMemoryRecordingStore


@pytest.mark.asyncio
async def test_turns_are_ordered_and_bump_conversation():
    store = InMemoryConversationStore()
    conversation = await store.create_conversation("user-123", "PS5", scope_id="422")
    created = conversation.updated_at

    for n in range(5):
        await store.append_turn(conversation.id, "user" if n % 2 == 0 else "assistant", f"turn {n}")

    turns = await store.all_turns(conversation.id)
    assert [t.content for t in turns] == [f"turn {n}" for n in range(5)]
    assert all(a.created_at <= b.created_at for a, b in zip(turns, turns[1:]))
    assert conversation.updated_at >= created

    recent = await store.recent_turns(conversation.id, 2)
    assert [t.content for t in recent] == ["turn 3", "turn 4"]
    assert await store.recent_turns(conversation.id, 0) == []


@pytest.mark.asyncio
async def test_find_latest_is_per_user_and_course():
    store = InMemoryConversationStore()
    older = await store.create_conversation("user-123", "Old", scope_id="422")
    newer = await store.create_conversation("user-123", "New", scope_id="422")
    await store.create_conversation("user-123", "Other course", scope_id="430")
    await store.create_conversation("someone-else", "Theirs", scope_id="422")

    older.updated_at -= timedelta(minutes=5)
    await store.append_turn(newer.id, "user", "hi")
    assert (await store.find_latest("user-123", "422")).id == newer.id

    newer.updated_at -= timedelta(minutes=10)
    await store.append_turn(older.id, "user", "back again")
    assert (await store.find_latest("user-123", "422")).id == older.id
    assert await store.find_latest("user-123", None) is None


@pytest.mark.asyncio
async def test_conversations_are_private():
    store = InMemoryConversationStore()
    conversation = await store.create_conversation("user-123", "Mine")

    assert await store.get_conversation(conversation.id, "someone-else") is None
    assert await store.list_conversations("someone-else") == []
    assert len(await store.list_conversations("user-123")) == 1


@pytest.mark.asyncio
async def test_append_to_unknown_conversation_fails():
    store = InMemoryConversationStore()

    with pytest.raises(DatabaseError):
        await store.append_turn("missing", "user", "hello")


@pytest.mark.asyncio
async def test_recording_job_transitions_once():
    store = InMemoryRecordingStore()
    job = await store.create_job("user-123", "Lecture 1", "422", None)
    await store.set_blob_ref(job.id, "recordings/abc.webm")

    await store.mark_completed(job.id, "transcript", "summary", 61.5)

    stored = (await store.list_recordings("user-123"))[0]
    assert stored.status == RecordingStatus.COMPLETED
    assert stored.source_blob_ref is None
    assert stored.duration_seconds == 61.5

    with pytest.raises(DatabaseError):
        await store.mark_completed(job.id, "again", "again", None)

    # Failing a finished job leaves it untouched
    await store.mark_failed(job.id, "late failure")
    assert stored.status == RecordingStatus.COMPLETED
    assert stored.summary == "summary"


@pytest.mark.asyncio
async def test_list_recordings_filters_by_course():
    store = InMemoryRecordingStore()
    await store.create_job("user-123", "A", "422", None)
    await store.create_job("user-123", "B", "430", None)
    await store.create_job("someone-else", "C", "422", None)

    assert [job.title for job in await store.list_recordings("user-123", scope_id="422")] == ["A"]
    assert len(await store.list_recordings("user-123")) == 2
