"""
Persistence for lecture recording jobs (recordings table).
"""

import uuid
from datetime import UTC, datetime
from typing import Protocol

from coursepilot.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from coursepilot.db.pool import db_pool
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.domain.recording_domain import RecordingJob, RecordingStatus

logger = get_logger(__name__)


class RecordingStore(Protocol):
    async def create_job(
        self, user_id: str, title: str, scope_id: str | None, blob_ref: str | None
    ) -> RecordingJob: ...

    async def set_blob_ref(self, job_id: str, blob_ref: str) -> None: ...

    async def mark_completed(
        self, job_id: str, transcript: str, summary: str, duration_seconds: float | None
    ) -> None: ...

    async def mark_failed(self, job_id: str, reason: str) -> None: ...

    async def list_recordings(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[RecordingJob]: ...


class RecordingRepository:
    """Postgres-backed RecordingStore."""

    SELECT_COLUMNS = """
        id, user_id, course_id, title, summary, transcription, duration,
        audio_url, status, created_at, processed_at
    """

    @staticmethod
    def _row_to_job(row: dict) -> RecordingJob:
        course_id = row.get("course_id")
        return RecordingJob(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            status=RecordingStatus(row["status"]),
            scope_id=str(course_id) if course_id is not None else None,
            source_blob_ref=row.get("audio_url"),
            transcript=row.get("transcription"),
            summary=row.get("summary"),
            duration_seconds=row.get("duration"),
            created_at=row.get("created_at"),
            updated_at=row.get("processed_at"),
        )

    async def create_job(
        self, user_id: str, title: str, scope_id: str | None, blob_ref: str | None
    ) -> RecordingJob:
        query = f"""
            INSERT INTO recordings (user_id, course_id, title, audio_url, status)
            VALUES (%s, %s, %s, %s, 'processing')
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (user_id, scope_id, title, blob_ref))
        if not row:
            raise DatabaseError("Failed to create recording", operation="create_recording")

        logger.info("Recording job created", recording_id=str(row["id"]), user_id=user_id)
        return self._row_to_job(row)

    async def set_blob_ref(self, job_id: str, blob_ref: str) -> None:
        await execute_query("UPDATE recordings SET audio_url = %s WHERE id = %s", (blob_ref, job_id))

    async def mark_completed(
        self, job_id: str, transcript: str, summary: str, duration_seconds: float | None
    ) -> None:
        # Only derived text is kept; the audio reference is cleared
        query = """
            UPDATE recordings
            SET status = 'completed',
                transcription = %s,
                summary = %s,
                duration = %s,
                audio_url = NULL,
                processed_at = NOW()
            WHERE id = %s AND status = 'processing'
        """
        duration = int(duration_seconds) if duration_seconds is not None else None
        updated = await execute_query(query, (transcript, summary, duration, job_id))
        if updated == 0:
            raise DatabaseError(
                f"Recording {job_id} is not in processing state", operation="mark_completed"
            )
        logger.info("Recording job completed", recording_id=job_id)

    async def mark_failed(self, job_id: str, reason: str) -> None:
        query = """
            UPDATE recordings
            SET status = 'failed',
                summary = %s,
                audio_url = NULL,
                processed_at = NOW()
            WHERE id = %s AND status = 'processing'
        """
        await execute_query(query, (reason, job_id))
        logger.info("Recording job failed", recording_id=job_id, reason=reason)

    async def list_recordings(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[RecordingJob]:
        if scope_id is None:
            query = f"""
                SELECT {self.SELECT_COLUMNS} FROM recordings
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            params: tuple = (user_id, limit)
        else:
            query = f"""
                SELECT {self.SELECT_COLUMNS} FROM recordings
                WHERE user_id = %s AND course_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            params = (user_id, scope_id, limit)

        rows = await fetch_all(query, params)
        return [self._row_to_job(row) for row in rows]


class InMemoryRecordingStore:
    """Process-local RecordingStore used when no database is configured."""

    def __init__(self):
        self._jobs: dict[str, RecordingJob] = {}

    async def create_job(
        self, user_id: str, title: str, scope_id: str | None, blob_ref: str | None
    ) -> RecordingJob:
        now = datetime.now(UTC)
        job = RecordingJob(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=title,
            status=RecordingStatus.PROCESSING,
            scope_id=scope_id,
            source_blob_ref=blob_ref,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job.id] = job
        return job

    def _get(self, job_id: str) -> RecordingJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise DatabaseError(f"Unknown recording {job_id}", operation="recording_lookup")
        return job

    async def set_blob_ref(self, job_id: str, blob_ref: str) -> None:
        self._get(job_id).source_blob_ref = blob_ref

    async def mark_completed(
        self, job_id: str, transcript: str, summary: str, duration_seconds: float | None
    ) -> None:
        job = self._get(job_id)
        try:
            job.complete(transcript, summary)
        except ValueError as e:
            raise DatabaseError(str(e), operation="mark_completed") from e
        job.duration_seconds = duration_seconds
        job.source_blob_ref = None
        job.updated_at = datetime.now(UTC)

    async def mark_failed(self, job_id: str, reason: str) -> None:
        job = self._get(job_id)
        if job.is_terminal:
            return
        job.fail(reason)
        job.source_blob_ref = None
        job.updated_at = datetime.now(UTC)

    async def list_recordings(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[RecordingJob]:
        jobs = [
            job
            for job in self._jobs.values()
            if job.user_id == user_id and (scope_id is None or job.scope_id == scope_id)
        ]
        jobs.sort(key=lambda job: job.created_at or datetime.min.replace(tzinfo=UTC), reverse=True)
        return jobs[:limit]


_memory_store = InMemoryRecordingStore()


def get_recording_store() -> RecordingStore:
    """Postgres when the pool is up, otherwise the process-local store."""
    if db_pool.is_initialized:
        return RecordingRepository()
    return _memory_store
