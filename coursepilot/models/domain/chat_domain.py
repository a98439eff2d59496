"""
Domain models for the course assistant.

SearchIntent is validated with pydantic because it is parsed from model output;
the rest are plain dataclasses passed between the assistant stages.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

Category = Literal["assignments", "announcements", "files", "courses", "general"]
TimeFilter = Literal["this_week", "next_week", "this_month", "past_due"]
Priority = Literal["due_soon", "overdue", "high_priority"]
Intent = Literal["find_assignments", "check_deadlines", "get_course_info", "general_question"]
DocumentSource = Literal["content", "conversation", "recording"]
Role = Literal["user", "assistant"]


class SearchIntent(BaseModel):
    """Structured interpretation of one user question."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: Category = Field(
        "general",
        validation_alias=AliasChoices("category", "searchType"),
        description="Kind of course content asked about",
    )
    scope_filter: str | None = Field(
        None,
        validation_alias=AliasChoices("scope_filter", "courseFilter"),
        description="Course code the question is limited to",
    )
    time_filter: TimeFilter | None = Field(
        None,
        validation_alias=AliasChoices("time_filter", "timeFilter"),
        description="Canonical time window",
    )
    priority: Priority | None = Field(None, description="Urgency hint")
    keywords: list[str] = Field(default_factory=list, description="Search keywords, in order")
    specific_targets: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("specific_targets", "specificItems"),
        description="Named items such as PS5 or Project 2",
    )
    intent: Intent = Field("general_question", description="What the user wants to do")

    @field_validator("scope_filter", "time_filter", "priority", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        # Models sometimes spell a missing value as the string "null"
        if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
            return None
        return value

    @field_validator("keywords", "specific_targets", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    @property
    def is_targeted(self) -> bool:
        return bool(self.specific_targets)


@dataclass(frozen=True, slots=True)
class CourseScope:
    """A course the user can ask about; used for scope matching and filtering."""

    id: str
    code: str | None = None
    name: str | None = None


@dataclass(frozen=True, slots=True)
class SearchPlan:
    query: str
    limit: int


@dataclass(frozen=True, slots=True)
class RetrievedDocument:
    title: str
    body: str
    category: str
    scope_id: str | None
    external_id: str | None
    source: DocumentSource = "content"
    score: float | None = None


@dataclass(slots=True)
class Conversation:
    id: str
    user_id: str
    scope_id: str | None
    title: str
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class ConversationTurn:
    conversation_id: str
    role: Role
    content: str
    created_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
