from pathlib import Path

import pytest
from conftest import FakeGenerator, FakeVectorStore

from coursepilot.features.recordings.pipeline import RecordingIngestionService, RecordingProcessingError
from coursepilot.models.domain.chat_domain import CourseScope
from coursepilot.models.domain.recording_domain import RecordingStatus
from coursepilot.repositories.recording_repository import InMemoryRecordingStore
from coursepilot.services.blob_storage import BlobStorage
from coursepilot.services.openai_service import GenerationServiceError

AUDIO = b"RIFF....fake-audio-bytes"
TRANSCRIPT = "Today we covered gradient descent and the bias variance tradeoff. PS5 is due Friday."


class CountingBlobStorage(BlobStorage):
    def __init__(self, root):
        super().__init__(root)
        self.uploaded: list[str] = []
        self.deleted: list[str] = []

    async def upload(self, data, filename, prefix="recordings"):
        ref = await super().upload(data, filename, prefix)
        self.uploaded.append(ref)
        return ref

    async def delete(self, blob_ref):
        self.deleted.append(blob_ref)
        return await super().delete(blob_ref)


def make_service(tmp_path, generator):
    blobs = CountingBlobStorage(tmp_path / "blobs")
    store = InMemoryRecordingStore()
    vectors = FakeVectorStore()
    service = RecordingIngestionService(
        generator=generator,
        blobs=blobs,
        store_factory=lambda: store,
        vector_store_factory=lambda: vectors,
        temp_dir=tmp_path / "tmp",
        min_transcript_chars=20,
    )
    return service, blobs, store, vectors


@pytest.mark.asyncio
async def test_successful_ingestion_keeps_only_text(tmp_path):
    generator = FakeGenerator(transcript=TRANSCRIPT, completion="Main topics: gradient descent.")
    service, blobs, store, vectors = make_service(tmp_path, generator)

    job = await service.process(
        "user-123",
        AUDIO,
        "lecture.webm",
        "Lecture 7",
        scope_id="422",
        scope_info=CourseScope(id="422", code="CMSC422", name="Machine Learning"),
    )

    assert job.status == RecordingStatus.COMPLETED
    assert job.transcript == TRANSCRIPT
    assert job.summary == "Main topics: gradient descent."
    assert job.source_blob_ref is None

    stored = (await store.list_recordings("user-123"))[0]
    assert stored.status == RecordingStatus.COMPLETED
    assert stored.source_blob_ref is None

    assert generator.transcriptions == [(AUDIO, "lecture.webm")]
    summary_prompt = generator.completions[0][1]["content"]
    assert summary_prompt.startswith("Course: Machine Learning (CMSC422)")
    assert TRANSCRIPT in summary_prompt

    assert len(blobs.uploaded) == 1
    assert blobs.deleted == blobs.uploaded
    assert not await blobs.exists(blobs.uploaded[0])
    assert list((tmp_path / "tmp").iterdir()) == []
    assert vectors.indexed_recordings[0].id == job.id


@pytest.mark.asyncio
async def test_empty_transcript_fails_job_and_deletes_blob_once(tmp_path):
    generator = FakeGenerator(transcript="")
    service, blobs, store, vectors = make_service(tmp_path, generator)

    with pytest.raises(RecordingProcessingError) as exc_info:
        await service.process("user-123", AUDIO, "silence.webm", "Silent lecture")

    assert exc_info.value.recoverable is False
    job = (await store.list_recordings("user-123"))[0]
    assert exc_info.value.recording_id == job.id
    assert job.status == RecordingStatus.FAILED
    assert job.summary == "Transcription is empty or too short"

    assert len(blobs.deleted) == 1
    assert blobs.deleted == blobs.uploaded
    assert list((tmp_path / "tmp").iterdir()) == []
    assert generator.completions == []
    assert vectors.indexed_recordings == []


@pytest.mark.asyncio
async def test_short_transcript_is_rejected(tmp_path):
    generator = FakeGenerator(transcript="uh, okay")
    service, _, store, _ = make_service(tmp_path, generator)

    with pytest.raises(RecordingProcessingError):
        await service.process("user-123", AUDIO, "short.m4a", "Short")

    assert (await store.list_recordings("user-123"))[0].status == RecordingStatus.FAILED


@pytest.mark.asyncio
async def test_summary_failure_marks_job_failed(tmp_path):
    generator = FakeGenerator(transcript=TRANSCRIPT, completion=GenerationServiceError("OpenAI chat_completion failed"))
    service, blobs, store, _ = make_service(tmp_path, generator)

    with pytest.raises(RecordingProcessingError) as exc_info:
        await service.process("user-123", AUDIO, "lecture.mp3", "Lecture 8")

    assert exc_info.value.recoverable is True
    job = (await store.list_recordings("user-123"))[0]
    assert job.status == RecordingStatus.FAILED
    assert "chat_completion failed" in job.summary
    assert len(blobs.deleted) == 1


@pytest.mark.asyncio
async def test_empty_upload_is_rejected_before_any_work(tmp_path):
    generator = FakeGenerator(transcript=TRANSCRIPT)
    service, blobs, store, _ = make_service(tmp_path, generator)

    with pytest.raises(RecordingProcessingError):
        await service.process("user-123", b"", "empty.webm", "Empty")

    assert await store.list_recordings("user-123") == []
    assert blobs.uploaded == []


@pytest.mark.asyncio
async def test_failed_temp_write_leaves_no_partial_file(tmp_path, monkeypatch):
    generator = FakeGenerator(transcript=TRANSCRIPT)
    service, blobs, store, _ = make_service(tmp_path, generator)

    def disk_full(self, data):
        with self.open("wb") as f:
            f.write(data[:4])
        raise OSError(28, "No space left on device")

    monkeypatch.setattr(Path, "write_bytes", disk_full)

    with pytest.raises(RecordingProcessingError) as exc_info:
        await service.process("user-123", AUDIO, "lecture.webm", "Lecture 9")

    assert "No space left on device" in str(exc_info.value)
    assert list((tmp_path / "tmp").iterdir()) == []
    assert blobs.uploaded == []
    assert (await store.list_recordings("user-123"))[0].status == RecordingStatus.FAILED
    assert generator.transcriptions == []
