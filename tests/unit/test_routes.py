"""
HTTP tests for the session, dashboard, assistant and recording routes.
"""

import asyncio
import io
import time

import jwt
import pytest
from conftest import FakeCanvasClient, make_cards
from fastapi import HTTPException, UploadFile
from fastapi.testclient import TestClient

from coursepilot.config import settings
from coursepilot.features.assistant.pipeline import AnswerStream
from coursepilot.features.recordings.pipeline import RecordingProcessingError
from coursepilot.main import app
from coursepilot.models.domain.recording_domain import RecordingJob, RecordingStatus
from coursepilot.routes.recordings import _read_upload
from coursepilot.services.canvas.session import SessionRegistry
from coursepilot.services.openai_service import GenerationServiceError

JWT_SECRET = "test-secret-with-at-least-thirty-two-bytes"


@pytest.fixture
def client(apply_auth_override, monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    apply_auth_override(app)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def registry(monkeypatch):
    registry = SessionRegistry()
    monkeypatch.setattr("coursepilot.routes.dependencies.session_registry", registry)
    monkeypatch.setattr("coursepilot.routes.session.session_registry", registry)
    return registry


def open_session(registry, user_id, client):
    return asyncio.run(registry.create(user_id, client))


def assignments_for(course_id):
    due_at = f"2026-03-{course_id - 99:02d}T00:00:00Z"
    return [{"id": course_id * 10, "name": f"Assignment {course_id}", "due_at": due_at}]


class FakeAnswerPipeline:
    def __init__(self, chunks=None, error=None):
        self.chunks = chunks or ["PS5 is ", "due Friday."]
        self.error = error
        self.calls = []

    async def answer(self, user_id, message, scope_id=None, conversation_id=None, known_scopes=()):
        self.calls.append(
            {"user_id": user_id, "message": message, "scope_id": scope_id, "known_scopes": list(known_scopes)}
        )
        if self.error is not None:
            raise self.error

        async def chunks():
            for chunk in self.chunks:
                yield chunk

        return AnswerStream(conversation_id="conv-1", summary="General search", chunks=chunks())


class FakeRecordingService:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def process(self, user_id, audio, filename, title, scope_id=None, scope_info=None):
        self.calls.append({"filename": filename, "title": title, "scope_id": scope_id, "scope_info": scope_info})
        if self.error is not None:
            raise self.error
        return RecordingJob(
            id="rec-1",
            user_id=user_id,
            title=title,
            status=RecordingStatus.COMPLETED,
            scope_id=scope_id,
            transcript="transcript",
            summary="summary",
        )


def test_dashboard_requires_session(client, registry):
    response = client.get("/api/dashboard")

    assert response.status_code == 401


def test_dashboard_and_favorites(client, registry):
    fake = FakeCanvasClient(make_cards(2), responses={"assignments": assignments_for})
    session = open_session(registry, "user-123", fake)
    headers = {"X-Session-Id": session.id}

    response = client.get("/api/dashboard", headers=headers)

    assert response.status_code == 200
    data = response.json()
    assert [c["id"] for c in data["courses"]] == [100, 101]
    assert [a["course_name"] for a in data["assignments"]] == ["Course 0", "Course 1"]
    assert data["performance"]["courses_processed"] == 2
    assert data["performance"]["assignments_count"] == 2

    favorites = client.get("/api/courses/favorites", headers=headers).json()
    assert favorites[0] == {
        "id": 100,
        "name": "Course 0",
        "course_code": "CRS000",
        "enrollments": [],
        "term": "Fall",
        "href": None,
    }


def test_course_detail_modules_file_and_upcoming(client, registry):
    fake = FakeCanvasClient(
        make_cards(1),
        responses={
            "course": lambda course_id: {"id": course_id, "name": "Machine Learning", "syllabus_body": "<p>Grading</p>"},
            "modules": lambda course_id: [{"id": 1, "name": "Week 1", "items": [{"id": 11, "title": "Intro"}]}],
            "file": lambda file_id: {"id": file_id, "display_name": "syllabus.pdf", "url": "https://files.example/1"},
            "upcoming": lambda limit: [{"id": f"assignment_{n}", "assignment": {"id": n}} for n in range(limit)],
        },
    )
    headers = {"X-Session-Id": open_session(registry, "user-123", fake).id}

    course = client.get("/api/courses/422", headers=headers)
    assert course.status_code == 200
    assert course.json()["id"] == 422
    assert course.json()["syllabus_body"] == "<p>Grading</p>"

    modules = client.get("/api/courses/422/modules", headers=headers).json()
    assert modules[0]["items"][0]["title"] == "Intro"

    assert client.get("/api/files/9", headers=headers).json()["display_name"] == "syllabus.pdf"
    assert len(client.get("/api/upcoming", params={"limit": 3}, headers=headers).json()) == 3
    assert client.get("/api/upcoming", params={"limit": 0}, headers=headers).status_code == 422


def test_missing_canvas_object_maps_to_404(client, registry):
    headers = {"X-Session-Id": open_session(registry, "user-123", FakeCanvasClient(make_cards(1))).id}

    assert client.get("/api/courses/999", headers=headers).status_code == 404
    assert client.get("/api/files/999", headers=headers).status_code == 404
    assert client.get("/api/courses/999").status_code == 401

def test_session_belongs_to_its_user(client, registry):
    session = open_session(registry, "someone-else", FakeCanvasClient(make_cards(1)))

    response = client.get("/api/dashboard", headers={"X-Session-Id": session.id})

    assert response.status_code == 401


def test_auth_status_and_logout(client, registry):
    fake = FakeCanvasClient(make_cards(1))
    session = open_session(registry, "user-123", fake)
    headers = {"X-Session-Id": session.id}

    assert client.get("/auth/status", headers=headers).json() == {
        "authenticated": True,
        "domain": "school.instructure.com",
    }
    assert client.post("/logout", headers=headers).json()["success"] is True
    assert fake.closed is True
    assert client.get("/auth/status", headers=headers).json()["authenticated"] is False


def test_reauth_closes_previous_session(client, registry, monkeypatch):
    clients = [FakeCanvasClient(make_cards(1)), FakeCanvasClient(make_cards(1))]
    monkeypatch.setattr("coursepilot.routes.session.create_canvas_client", lambda token, domain: clients.pop(0))
    first_client, second_client = clients
    body = {"token": "canvas-token", "domain": "https://school.instructure.com/"}

    first = client.post("/auth", json=body).json()
    second = client.post("/auth", json=body).json()

    assert first["session_id"] != second["session_id"]
    assert first_client.closed is True
    assert second_client.closed is False
    assert len(registry) == 1
    assert client.get("/api/performance", headers={"X-Session-Id": first["session_id"]}).status_code == 401
    assert client.get("/api/performance", headers={"X-Session-Id": second["session_id"]}).status_code == 200


def test_performance_counters(client, registry):
    session = open_session(registry, "user-123", FakeCanvasClient(make_cards(1)))

    response = client.get("/api/performance", headers={"X-Session-Id": session.id})

    assert response.status_code == 200
    data = response.json()
    assert data["total_requests"] == 0
    assert data["active_requests"] == 0


def test_chat_streams_answer(client, monkeypatch):
    pipeline = FakeAnswerPipeline()
    monkeypatch.setattr("coursepilot.routes.chat.answer_pipeline", pipeline)

    response = client.post(
        "/api/chat",
        json={
            "message": "When is PS5 due?",
            "course_id": "422",
            "courses": [{"id": "422", "code": "CMSC422", "name": "Machine Learning"}],
        },
    )

    assert response.status_code == 200
    assert response.text == "PS5 is due Friday."
    assert response.headers["x-conversation-id"] == "conv-1"
    assert response.headers["content-type"].startswith("text/plain")
    assert pipeline.calls[0]["user_id"] == "user-123"
    assert pipeline.calls[0]["known_scopes"][0].code == "CMSC422"


def test_chat_generation_failure_maps_to_502(client, monkeypatch):
    pipeline = FakeAnswerPipeline(error=GenerationServiceError("OpenAI chat_stream failed"))
    monkeypatch.setattr("coursepilot.routes.chat.answer_pipeline", pipeline)

    response = client.post("/api/chat", json={"message": "Hi", "courses": []})

    assert response.status_code == 502


def test_chat_rejects_empty_message(client):
    response = client.post("/api/chat", json={"message": ""})

    assert response.status_code == 422


def test_unknown_conversation_messages_404(client):
    response = client.get("/api/conversations/does-not-exist/messages")

    assert response.status_code == 404


def test_recording_upload(client, monkeypatch):
    service = FakeRecordingService()
    monkeypatch.setattr("coursepilot.routes.recordings.recording_service", service)

    response = client.post(
        "/api/recordings",
        files={"audio": ("lecture.webm", b"fake-audio", "audio/webm")},
        data={"title": "Lecture 7", "course_id": "422", "course_code": "CMSC422"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["id"] == "rec-1"
    assert data["status"] == "completed"
    assert service.calls[0]["filename"] == "lecture.webm"
    assert service.calls[0]["scope_info"].code == "CMSC422"


def test_recording_upload_too_large(client, monkeypatch):
    service = FakeRecordingService()
    monkeypatch.setattr("coursepilot.routes.recordings.recording_service", service)
    monkeypatch.setattr(settings, "RECORDING_MAX_UPLOAD_BYTES", 10)

    response = client.post(
        "/api/recordings",
        files={"audio": ("lecture.webm", b"x" * 20, "audio/webm")},
        data={"title": "Lecture 7"},
    )

    assert response.status_code == 413
    assert service.calls == []


def test_upload_without_declared_size_stops_reading_past_the_limit(monkeypatch):
    monkeypatch.setattr("coursepilot.routes.recordings.UPLOAD_CHUNK_BYTES", 4)
    body = io.BytesIO(b"x" * 20)
    upload = UploadFile(body, filename="lecture.webm")

    with pytest.raises(HTTPException) as exc_info:
        asyncio.run(_read_upload(upload, 10))

    assert exc_info.value.status_code == 413
    assert body.tell() == 12

    small = UploadFile(io.BytesIO(b"y" * 9), filename="short.webm")
    assert asyncio.run(_read_upload(small, 10)) == b"y" * 9

def test_recording_unusable_audio_maps_to_422(client, monkeypatch):
    error = RecordingProcessingError("Transcription is empty or too short", recording_id="rec-2", recoverable=False)
    monkeypatch.setattr("coursepilot.routes.recordings.recording_service", FakeRecordingService(error=error))

    response = client.post(
        "/api/recordings",
        files={"audio": ("silence.webm", b"fake-audio", "audio/webm")},
        data={"title": "Silent"},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["recording_id"] == "rec-2"


def test_real_token_verification(monkeypatch):
    app.dependency_overrides.clear()
    monkeypatch.setattr(settings, "SUPABASE_JWT_SECRET", JWT_SECRET)
    token = jwt.encode(
        {"sub": "user-456", "aud": "authenticated", "exp": int(time.time()) + 3600},
        JWT_SECRET,
        algorithm="HS256",
    )
    test_client = TestClient(app)

    ok = test_client.get("/auth/status", headers={"Authorization": f"Bearer {token}"})
    assert ok.status_code == 200
    assert ok.json()["authenticated"] is False

    forged = jwt.encode({"sub": "user-456", "aud": "authenticated"}, "another-secret-of-thirty-two-bytes!!", algorithm="HS256")
    rejected = test_client.get("/auth/status", headers={"Authorization": f"Bearer {forged}"})
    assert rejected.status_code == 401
