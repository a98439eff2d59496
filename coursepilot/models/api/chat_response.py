# coursepilot/models/api/chat_response.py
"""
Assistant and recording API response models.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ConversationResponse(BaseModel):
    id: str = Field(..., description="Conversation ID")
    title: str = Field(..., description="Conversation title")
    course_id: str | None = Field(None, description="Course the conversation belongs to")
    created_at: datetime = Field(..., description="When the conversation started")
    updated_at: datetime = Field(..., description="When the last message was added")


class ConversationsListResponse(BaseModel):
    conversations: list[ConversationResponse]
    total_count: int = Field(..., description="Number of conversations returned")


class MessageResponse(BaseModel):
    role: str = Field(..., description="user or assistant")
    content: str = Field(..., description="Message text")
    created_at: datetime = Field(..., description="When the message was added")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Analysis details")


class MessagesListResponse(BaseModel):
    conversation_id: str
    messages: list[MessageResponse]


class RecordingResponse(BaseModel):
    """A processed (or failed) lecture recording."""

    id: str = Field(..., description="Recording ID")
    title: str = Field(..., description="Recording title")
    status: str = Field(..., description="processing, completed or failed")
    course_id: str | None = Field(None, description="Course the recording belongs to")
    summary: str | None = Field(None, description="Lecture summary, or failure reason")
    transcript: str | None = Field(None, description="Full transcription")
    duration_seconds: float | None = Field(None, description="Recording length")
    created_at: datetime | None = Field(None, description="When the upload was received")
    processed_at: datetime | None = Field(None, description="When processing finished")


class RecordingsListResponse(BaseModel):
    recordings: list[RecordingResponse]
    total_count: int
