"""
Canvas domain models.

Upstream JSON is parsed once, here, into explicit records. The raw dict is kept
on every row so API responses can still expose fields we do not model.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Assignments without a due date sort after everything else
FAR_FUTURE = datetime(9999, 12, 31, tzinfo=UTC)
# Rows without any timestamp sort last in descending order
DISTANT_PAST = datetime(1970, 1, 1, tzinfo=UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a Canvas ISO-8601 timestamp; None for missing or malformed values."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass(frozen=True, slots=True)
class CourseCard:
    """One course from the Canvas dashboard; the unit of dashboard fan-out work."""

    id: int | str
    name: str
    course_code: str | None = None
    term: Any = None
    href: str | None = None
    enrollments: tuple = ()
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_canvas(cls, card: dict[str, Any]) -> "CourseCard":
        if card.get("id") is None:
            raise ValueError("Dashboard card is missing an id")
        return cls(
            id=card["id"],
            name=card.get("shortName") or card.get("originalName") or card.get("name") or "",
            course_code=card.get("courseCode") or card.get("course_code"),
            term=card.get("term"),
            href=card.get("href"),
            enrollments=tuple(card.get("enrollments") or ()),
            metadata=card,
        )

    def to_summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "course_code": self.course_code,
            "enrollments": list(self.enrollments),
            "term": self.term,
            "href": self.href,
        }


@dataclass(frozen=True, slots=True)
class AssignmentRow:
    course_id: int | str
    course_name: str
    id: Any
    name: str
    due_at: datetime | None
    raw: dict[str, Any] = field(compare=False, hash=False)

    @classmethod
    def from_canvas(cls, raw: dict[str, Any], card: CourseCard) -> "AssignmentRow":
        return cls(
            course_id=card.id,
            course_name=card.name,
            id=raw.get("id"),
            name=raw.get("name") or "",
            due_at=parse_timestamp(raw.get("due_at")),
            raw=raw,
        )

    @property
    def sort_key(self) -> datetime:
        return self.due_at or FAR_FUTURE

    def to_payload(self) -> dict[str, Any]:
        return {**self.raw, "course_id": self.course_id, "course_name": self.course_name}


@dataclass(frozen=True, slots=True)
class AnnouncementRow:
    course_id: int | str
    course_name: str
    id: Any
    title: str
    posted_at: datetime | None
    created_at: datetime | None
    raw: dict[str, Any] = field(compare=False, hash=False)

    @classmethod
    def from_canvas(cls, raw: dict[str, Any], card: CourseCard) -> "AnnouncementRow":
        return cls(
            course_id=card.id,
            course_name=card.name,
            id=raw.get("id"),
            title=raw.get("title") or "",
            posted_at=parse_timestamp(raw.get("posted_at")),
            created_at=parse_timestamp(raw.get("created_at")),
            raw=raw,
        )

    @property
    def sort_key(self) -> datetime:
        return self.posted_at or self.created_at or DISTANT_PAST

    def to_payload(self) -> dict[str, Any]:
        return {**self.raw, "course_id": self.course_id, "course_name": self.course_name}


@dataclass(frozen=True, slots=True)
class FileRow:
    course_id: int | str
    course_name: str
    id: Any
    display_name: str
    updated_at: datetime | None
    created_at: datetime | None
    raw: dict[str, Any] = field(compare=False, hash=False)

    @classmethod
    def from_canvas(cls, raw: dict[str, Any], card: CourseCard) -> "FileRow":
        return cls(
            course_id=card.id,
            course_name=card.name,
            id=raw.get("id"),
            display_name=raw.get("display_name") or raw.get("filename") or "",
            updated_at=parse_timestamp(raw.get("updated_at")),
            created_at=parse_timestamp(raw.get("created_at")),
            raw=raw,
        )

    @property
    def sort_key(self) -> datetime:
        return self.updated_at or self.created_at or DISTANT_PAST

    def to_payload(self) -> dict[str, Any]:
        return {**self.raw, "course_id": self.course_id, "course_name": self.course_name}


@dataclass(slots=True)
class DashboardPerformance:
    total_time_ms: float
    courses_processed: int
    assignments_count: int
    announcements_count: int
    files_count: int


@dataclass(slots=True)
class DashboardPayload:
    courses: list[CourseCard]
    assignments: list[AssignmentRow]
    announcements: list[AnnouncementRow]
    files: list[FileRow]
    performance: DashboardPerformance

    def to_dict(self) -> dict[str, Any]:
        return {
            "courses": [card.metadata or card.to_summary() for card in self.courses],
            "assignments": [row.to_payload() for row in self.assignments],
            "announcements": [row.to_payload() for row in self.announcements],
            "files": [row.to_payload() for row in self.files],
            "performance": {
                "total_time_ms": self.performance.total_time_ms,
                "courses_processed": self.performance.courses_processed,
                "assignments_count": self.performance.assignments_count,
                "announcements_count": self.performance.announcements_count,
                "files_count": self.performance.files_count,
            },
        }
