# coursepilot/models/api/canvas_request.py
"""
Canvas session API request models.
Used by routes for input validation.
"""

from pydantic import BaseModel, Field, field_validator


class CanvasAuthRequest(BaseModel):
    """Request for opening a Canvas session."""

    token: str = Field(..., min_length=1, description="Canvas personal access token")
    domain: str = Field(..., min_length=1, description="Canvas host, e.g. school.instructure.com")

    @field_validator("domain")
    @classmethod
    def _bare_host(cls, value: str) -> str:
        value = value.strip().removeprefix("https://").removeprefix("http://")
        return value.rstrip("/")
