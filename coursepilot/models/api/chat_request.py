# coursepilot/models/api/chat_request.py
"""
Assistant API request models.
"""

from pydantic import BaseModel, Field


class CourseContext(BaseModel):
    """A course the client knows the user is enrolled in."""

    id: str = Field(..., description="Canvas course ID")
    code: str | None = Field(None, description="Course code, e.g. CMSC422")
    name: str | None = Field(None, description="Course name")


class ChatRequest(BaseModel):
    """Request for a streamed assistant answer."""

    message: str = Field(..., min_length=1, max_length=4000, description="User question")
    course_id: str | None = Field(None, description="Course the question is scoped to")
    conversation_id: str | None = Field(None, description="Conversation to continue")
    courses: list[CourseContext] | None = Field(
        default=None, description="User's courses; fetched from Canvas when omitted and a session is present"
    )
