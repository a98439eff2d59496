"""
Recording ingestion job model.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class RecordingStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(slots=True)
class RecordingJob:
    """Represents a recordings row. processing moves to completed or failed, never back."""

    id: str
    user_id: str
    title: str
    status: RecordingStatus
    scope_id: str | None = None
    source_blob_ref: str | None = None
    transcript: str | None = None
    summary: str | None = None
    duration_seconds: float | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (RecordingStatus.COMPLETED, RecordingStatus.FAILED)

    def complete(self, transcript: str, summary: str) -> None:
        if self.is_terminal:
            raise ValueError(f"Recording {self.id} is already {self.status.value}")
        self.transcript = transcript
        self.summary = summary
        self.status = RecordingStatus.COMPLETED

    def fail(self, reason: str) -> None:
        if self.is_terminal:
            raise ValueError(f"Recording {self.id} is already {self.status.value}")
        self.summary = reason or "Recording processing failed"
        self.status = RecordingStatus.FAILED
