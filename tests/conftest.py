from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

import pytest

from coursepilot.auth.verify import auth_dependency
from coursepilot.core.batching import PerformanceMetrics
from coursepilot.models.domain.chat_domain import RetrievedDocument
from coursepilot.services.canvas.client import CanvasAPIError
from coursepilot.services.canvas.session import CanvasSession
from coursepilot.services.openai_service import GenerationServiceError


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


class FakeGenerator:
    """Stands in for OpenAIService; records every call."""

    def __init__(
        self,
        *,
        configured: bool = True,
        completion: str | Exception = "ok",
        chunks: list[str] | None = None,
        transcript: str = "",
        stream_error: Exception | None = None,
    ):
        self.is_configured = configured
        self.completion = completion
        self.chunks = chunks if chunks is not None else ["Hello", " there"]
        self.transcript = transcript
        self.stream_error = stream_error
        self.completions: list[list[dict[str, str]]] = []
        self.completion_options: list[dict[str, Any]] = []
        self.streams: list[list[dict[str, str]]] = []
        self.transcriptions: list[tuple[bytes, str]] = []

    async def complete(self, messages, **kwargs) -> str:
        self.completions.append(messages)
        self.completion_options.append(kwargs)
        if isinstance(self.completion, Exception):
            raise self.completion
        return self.completion

    async def stream(self, messages, **kwargs) -> AsyncIterator[str]:
        self.streams.append(messages)
        if not self.is_configured:
            raise GenerationServiceError("OpenAI client not initialized", recoverable=False)
        if self.stream_error is not None:
            raise self.stream_error
        for chunk in self.chunks:
            yield chunk

    async def transcribe(self, audio: bytes, filename: str) -> str:
        self.transcriptions.append((audio, filename))
        return self.transcript

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [[0.1, 0.2, 0.3] for _ in texts]


class FakeVectorStore:
    """Stands in for VectorStore; results and failures are keyed by collection."""

    def __init__(self, results: dict[str, list[RetrievedDocument]] | None = None, failing: set[str] | None = None):
        self.results = results or {}
        self.failing = failing or set()
        self.searches: list[dict[str, Any]] = []
        self.indexed_conversations: list[tuple[Any, list[Any]]] = []
        self.indexed_recordings: list[Any] = []
        self.indexed_content: list[dict[str, Any]] = []

    async def search(self, collection, query, limit, conditions, source="content"):
        self.searches.append(
            {"collection": collection, "query": query, "limit": limit, "conditions": dict(conditions), "source": source}
        )
        if collection in self.failing:
            raise RuntimeError(f"{collection} unavailable")
        return list(self.results.get(collection, []))[:limit]

    async def index_conversation(self, conversation, turns):
        self.indexed_conversations.append((conversation, list(turns)))
        return len(turns) // 2

    async def index_recording(self, job):
        self.indexed_recordings.append(job)
        return 1

    async def index_canvas_content(self, user_id, assignments=(), announcements=(), files=()):
        self.indexed_content.append(
            {"user_id": user_id, "assignments": list(assignments), "announcements": list(announcements), "files": list(files)}
        )
        return len(self.indexed_content[-1]["assignments"])


class FakeQueue:
    """Collects submitted tasks so tests can run them explicitly."""

    def __init__(self):
        self.tasks: list[tuple[str, Any, dict[str, Any]]] = []

    def submit(self, name, factory, **context) -> bool:
        self.tasks.append((name, factory, context))
        return True

    async def drain(self) -> None:
        tasks, self.tasks = self.tasks, []
        for _, factory, _ in tasks:
            await factory()


class FakeCanvasClient:
    """
    Canvas client double for aggregation tests.

    `responses` maps a category name to a callable (course_id) -> rows, or
    raises to simulate a failing course.
    """

    domain = "school.instructure.com"

    def __init__(self, cards: list[dict[str, Any]], responses: dict[str, Any] | None = None):
        self.cards = cards
        self.responses = responses or {}
        self.calls: dict[str, list[Any]] = {"assignments": [], "announcements": [], "files": []}
        self.active_requests = 0
        self.closed = False

    async def get_dashboard_cards(self):
        if isinstance(self.cards, Exception):
            raise self.cards
        return self.cards

    async def _category(self, name: str, course_id):
        self.calls[name].append(course_id)
        handler = self.responses.get(name)
        if handler is None:
            return []
        return handler(course_id)

    async def list_assignments(self, course_id):
        return await self._category("assignments", course_id)

    async def list_course_announcements(self, course_id):
        return await self._category("announcements", course_id)

    async def list_files(self, course_id):
        return await self._category("files", course_id)

    async def list_courses(self, include_ended: bool = False):
        return [{"id": card["id"], "name": card.get("shortName")} for card in self.cards]

    async def _lookup(self, name: str, *args):
        handler = self.responses.get(name)
        if handler is None:
            raise CanvasAPIError(f"Canvas API Error (404): {name} not found", status_code=404)
        return handler(*args)

    async def get_course(self, course_id):
        return await self._lookup("course", course_id)

    async def list_modules(self, course_id):
        return await self._lookup("modules", course_id)

    async def get_file(self, file_id):
        return await self._lookup("file", file_id)

    async def get_upcoming_events(self, limit: int = 10):
        return await self._lookup("upcoming", limit)

    async def health_check(self):
        return {"status": "ok", "timestamp": datetime.now(UTC).isoformat(), "user": {"id": 1, "name": "Test"}}

    async def aclose(self):
        self.closed = True


def make_cards(count: int) -> list[dict[str, Any]]:
    return [
        {"id": 100 + i, "shortName": f"Course {i}", "courseCode": f"CRS{i:03d}", "term": "Fall"}
        for i in range(count)
    ]


def make_session(client, user_id: str = "user-123", session_id: str = "session-1") -> CanvasSession:
    return CanvasSession(
        id=session_id,
        user_id=user_id,
        domain=client.domain,
        client=client,
        metrics=PerformanceMetrics(),
    )


async def no_sleep(delay: float) -> None:
    return None


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def fake_vector_store():
    return FakeVectorStore()


@pytest.fixture
def fake_queue():
    return FakeQueue()
