"""
Lecture recording routes.
"""

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from coursepilot.auth.verify import current_user_id
from coursepilot.config import settings
from coursepilot.db.helpers import DatabaseError
from coursepilot.features.recordings.pipeline import RecordingProcessingError, recording_service
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.api.chat_response import RecordingResponse, RecordingsListResponse
from coursepilot.models.domain.chat_domain import CourseScope
from coursepilot.models.domain.recording_domain import RecordingJob

logger = get_logger(__name__)

UPLOAD_CHUNK_BYTES = 1024 * 1024

router = APIRouter(prefix="/api/recordings", tags=["recordings"])


async def _read_upload(audio: UploadFile, max_bytes: int) -> bytes:
    """Read the upload in chunks, rejecting it as soon as it passes max_bytes."""
    too_large = HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"Recording exceeds {max_bytes} bytes",
    )
    if audio.size is not None and audio.size > max_bytes:
        raise too_large

    chunks: list[bytes] = []
    received = 0
    while True:
        chunk = await audio.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        received += len(chunk)
        if received > max_bytes:
            raise too_large
        chunks.append(chunk)
    return b"".join(chunks)


def _recording_response(job: RecordingJob) -> RecordingResponse:
    return RecordingResponse(
        id=job.id,
        title=job.title,
        status=job.status.value,
        course_id=job.scope_id,
        summary=job.summary,
        transcript=job.transcript,
        duration_seconds=job.duration_seconds,
        created_at=job.created_at,
        processed_at=job.updated_at,
    )


@router.post("", response_model=RecordingResponse, status_code=status.HTTP_201_CREATED)
async def upload_recording(
    audio: UploadFile = File(..., description="Lecture audio"),
    title: str = Form(..., min_length=1, max_length=200),
    course_id: str | None = Form(None),
    course_name: str | None = Form(None),
    course_code: str | None = Form(None),
    user_id: str = Depends(current_user_id),
):
    """Transcribe and summarize a lecture recording."""
    data = await _read_upload(audio, settings.RECORDING_MAX_UPLOAD_BYTES)

    scope_info = None
    if course_id and (course_name or course_code):
        scope_info = CourseScope(id=course_id, code=course_code, name=course_name)

    try:
        job = await recording_service.process(
            user_id,
            data,
            audio.filename or "recording.webm",
            title,
            scope_id=course_id,
            scope_info=scope_info,
        )
    except RecordingProcessingError as e:
        raise HTTPException(
            status_code=(
                status.HTTP_502_BAD_GATEWAY if e.recoverable else status.HTTP_422_UNPROCESSABLE_ENTITY
            ),
            detail={"message": str(e), "recording_id": e.recording_id},
        ) from e
    except DatabaseError as e:
        logger.error("Recording storage failed", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store recording",
        ) from e

    return _recording_response(job)


@router.get("", response_model=RecordingsListResponse)
async def list_recordings(
    course_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
):
    try:
        jobs = await recording_service.list_recordings(user_id, limit, course_id)
    except DatabaseError as e:
        logger.error("Failed to list recordings", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list recordings",
        ) from e

    return RecordingsListResponse(
        recordings=[_recording_response(job) for job in jobs],
        total_count=len(jobs),
    )
