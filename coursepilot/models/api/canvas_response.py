# coursepilot/models/api/canvas_response.py
"""
Canvas session and dashboard API response models.
Used by routes for output formatting.
"""

from typing import Any

from pydantic import BaseModel, Field


class CanvasAuthResponse(BaseModel):
    """Response after a Canvas session is opened."""

    success: bool = Field(..., description="Whether the credentials were accepted")
    message: str = Field(..., description="Human-readable result")
    session_id: str = Field(..., description="Value to send as X-Session-Id")
    domain: str = Field(..., description="Canvas host of the session")
    user: dict[str, Any] | None = Field(None, description="Canvas profile summary")


class LogoutResponse(BaseModel):
    success: bool = Field(..., description="Whether a session was closed")
    message: str = Field(..., description="Human-readable result")


class AuthStatusResponse(BaseModel):
    authenticated: bool = Field(..., description="Whether the session id refers to a live session")
    domain: str | None = Field(None, description="Canvas host of the session")


class PerformanceResponse(BaseModel):
    """Request counters for the current session."""

    total_requests: int = Field(..., description="Per-course requests attempted")
    successful_requests: int = Field(..., description="Requests that returned data")
    failed_requests: int = Field(..., description="Requests that failed")
    uptime_ms: float = Field(..., description="Time since the counters were reset")
    requests_per_second: float = Field(..., description="Coarse average since reset")
    success_rate_percent: float = Field(..., description="Successful share of requests")
    active_requests: int = Field(default=0, description="Canvas requests currently in flight")


class CanvasHealthResponse(BaseModel):
    status: str = Field(..., description="ok or error")
    timestamp: str = Field(..., description="ISO timestamp of the check")
    user: dict[str, Any] | None = Field(None, description="Canvas profile summary when ok")


class CourseSummaryResponse(BaseModel):
    """Essential course fields from a dashboard card."""

    id: int | str = Field(..., description="Canvas course ID")
    name: str = Field(..., description="Short or original course name")
    course_code: str | None = Field(None, description="Course code")
    enrollments: list[Any] = Field(default_factory=list, description="Enrollment records")
    term: Any = Field(None, description="Term")
    href: str | None = Field(None, description="Course link")


class DashboardPerformanceResponse(BaseModel):
    total_time_ms: float = Field(..., description="Wall time to build the dashboard")
    courses_processed: int = Field(..., description="Courses fanned out over")
    assignments_count: int = Field(..., description="Assignments found before truncation")
    announcements_count: int = Field(..., description="Announcements found before truncation")
    files_count: int = Field(..., description="Files found before truncation")


class DashboardResponse(BaseModel):
    """Consolidated dashboard; rows are Canvas objects tagged with course_id and course_name."""

    courses: list[dict[str, Any]] = Field(..., description="Dashboard cards")
    assignments: list[dict[str, Any]] = Field(..., description="Assignments by due date")
    announcements: list[dict[str, Any]] = Field(..., description="Announcements, newest first")
    files: list[dict[str, Any]] = Field(..., description="Files, most recently updated first")
    performance: DashboardPerformanceResponse
