"""
Lecture recording ingestion.

An uploaded recording is staged to a temp file and to blob storage,
transcribed, summarized and persisted. Only the transcript and summary are
kept: temp files and the uploaded blob are removed whatever the outcome.
"""

import asyncio
import dataclasses
import time
import uuid
from collections.abc import Callable
from pathlib import Path

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger, log_pipeline_stage
from coursepilot.models.domain.chat_domain import CourseScope
from coursepilot.models.domain.recording_domain import RecordingJob, RecordingStatus
from coursepilot.repositories.recording_repository import RecordingStore, get_recording_store
from coursepilot.services.blob_storage import BlobStorage, BlobStorageError, blob_storage
from coursepilot.services.openai_service import OpenAIService, openai_service
from coursepilot.services.vector_store import VectorStore, get_vector_store

logger = get_logger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are an expert at creating educational summaries from lecture transcriptions. "
    "Focus on extracting the most important educational content."
)

SUMMARY_PROMPT = """Please create a comprehensive summary of this lecture transcription. Include:

1. Main topics covered
2. Key concepts and definitions
3. Important points to remember
4. Any assignments or deadlines mentioned

Transcription:
{transcript}"""


class RecordingProcessingError(Exception):
    """Raised when a recording cannot be turned into a transcript and summary."""

    def __init__(self, message: str, recording_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.recording_id = recording_id
        self.recoverable = recoverable


def summary_prompt(transcript: str, scope: CourseScope | None = None) -> str:
    prompt = SUMMARY_PROMPT.format(transcript=transcript)
    if scope is not None:
        prompt = f"Course: {scope.name or scope.id} ({scope.code or 'no code'})\n\n{prompt}"
    return prompt


class RecordingIngestionService:
    def __init__(
        self,
        *,
        generator: OpenAIService | None = None,
        blobs: BlobStorage | None = None,
        store_factory: Callable[[], RecordingStore] = get_recording_store,
        vector_store_factory: Callable[[], VectorStore] = get_vector_store,
        temp_dir: str | Path | None = None,
        min_transcript_chars: int = settings.RECORDING_MIN_TRANSCRIPT_CHARS,
    ):
        self.generator = generator or openai_service
        self.blobs = blobs or blob_storage
        self.store_factory = store_factory
        self.vector_store_factory = vector_store_factory
        self.temp_dir = Path(temp_dir or settings.RECORDING_TEMP_DIR)
        self.min_transcript_chars = min_transcript_chars

    async def process(
        self,
        user_id: str,
        audio: bytes,
        filename: str,
        title: str,
        scope_id: str | None = None,
        scope_info: CourseScope | None = None,
    ) -> RecordingJob:
        """
        Ingest one recording end to end.

        Returns:
            RecordingJob: The completed job

        Raises:
            RecordingProcessingError: If any step before persistence fails; the
                job is marked failed with the error message as its summary
        """
        if not audio:
            raise RecordingProcessingError("Uploaded recording is empty", recoverable=False)

        start = time.perf_counter()
        store = self.store_factory()
        job = await store.create_job(user_id, title, scope_id, None)

        # Cleanup also covers a partly written temp file
        temp_path = self._temp_path(filename)
        blob_ref: str | None = None
        try:
            await self._write_temp(temp_path, audio)
            blob_ref = await self.blobs.upload(audio, filename)
            await store.set_blob_ref(job.id, blob_ref)

            transcript = await self.generator.transcribe(await asyncio.to_thread(temp_path.read_bytes), filename)
            if len(transcript.strip()) < self.min_transcript_chars:
                raise RecordingProcessingError(
                    "Transcription is empty or too short", recording_id=job.id, recoverable=False
                )
            log_pipeline_stage(
                "recording", "transcribe", (time.perf_counter() - start) * 1000,
                recording_id=job.id, transcript_chars=len(transcript),
            )

            summary = await self.generator.complete(
                [
                    {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                    {"role": "user", "content": summary_prompt(transcript, scope_info)},
                ],
                max_tokens=800,
                temperature=0.3,
            )
            await store.mark_completed(job.id, transcript, summary, None)
        except Exception as e:
            await self._mark_failed(store, job, e)
            if isinstance(e, RecordingProcessingError):
                raise
            raise RecordingProcessingError(
                f"Recording processing failed: {e}", recording_id=job.id
            ) from e
        finally:
            await self._cleanup(job.id, temp_path, blob_ref)

        completed = dataclasses.replace(
            job,
            status=RecordingStatus.COMPLETED,
            transcript=transcript,
            summary=summary,
            source_blob_ref=None,
        )
        log_pipeline_stage(
            "recording", "completed", (time.perf_counter() - start) * 1000, recording_id=job.id
        )

        await self._index(completed)
        return completed

    def _temp_path(self, filename: str) -> Path:
        return self.temp_dir / f"{uuid.uuid4().hex}{Path(filename).suffix.lower()[:10]}"

    async def _write_temp(self, path: Path, audio: bytes) -> None:
        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(audio)

        await asyncio.to_thread(_write)

    async def _mark_failed(self, store: RecordingStore, job: RecordingJob, error: Exception) -> None:
        logger.error(
            "Recording processing failed",
            recording_id=job.id,
            error=str(error),
            error_type=type(error).__name__,
        )
        try:
            await store.mark_failed(job.id, str(error))
        except Exception as e:
            logger.error("Failed to mark recording as failed", recording_id=job.id, error=str(e))

    async def _cleanup(self, recording_id: str, temp_path: Path | None, blob_ref: str | None) -> None:
        if temp_path is not None:
            try:
                await asyncio.to_thread(temp_path.unlink, missing_ok=True)
            except OSError as e:
                logger.warning("Temp file cleanup failed", recording_id=recording_id, error=str(e))

        if blob_ref is not None:
            try:
                await self.blobs.delete(blob_ref)
            except BlobStorageError as e:
                logger.warning("Blob cleanup failed", recording_id=recording_id, blob_ref=blob_ref, error=str(e))

    async def _index(self, job: RecordingJob) -> None:
        if not self.generator.is_configured:
            return
        try:
            await self.vector_store_factory().index_recording(job)
        except Exception as e:
            logger.warning("Recording indexing failed", recording_id=job.id, error=str(e))

    async def list_recordings(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[RecordingJob]:
        return await self.store_factory().list_recordings(user_id, limit, scope_id)


recording_service = RecordingIngestionService()
