"""
Query analysis for the course assistant.

Turns a free-text question into a SearchIntent. A small, fast chat model does
the classification when configured; otherwise (or when its output cannot be
used) a rule-based classifier takes over. The rule-based path never raises.
"""

import json
import re
import time
from collections.abc import Sequence

from pydantic import ValidationError

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger, log_pipeline_stage
from coursepilot.models.domain.chat_domain import CourseScope, SearchIntent, SearchPlan
from coursepilot.services.openai_service import OpenAIService, openai_service

logger = get_logger(__name__)

TARGETED_LIMIT = 5
COURSE_INFO_LIMIT = 20
DEFAULT_LIMIT = 10

_JSON_DECODER = json.JSONDecoder()

_ASSIGNMENT_VOCAB = re.compile(
    r"\b(assignments?|homework|hw\d*|ps\d+|problem sets?|projects?|quiz(?:zes)?|exams?|tests?)\b",
    re.IGNORECASE,
)
_ANNOUNCEMENT_VOCAB = re.compile(r"\b(announcements?|news|updates?|notices?)\b", re.IGNORECASE)
_FILE_VOCAB = re.compile(r"\b(files?|documents?|pdfs?|syllabus|materials?)\b", re.IGNORECASE)
_COURSE_VOCAB = re.compile(r"\b(courses?|class(?:es)?|taking|enrolled)\b", re.IGNORECASE)
_DEADLINE_VOCAB = re.compile(r"\b(due|deadlines?)\b", re.IGNORECASE)
_URGENT_VOCAB = re.compile(r"\b(due|deadlines?|urgent)\b", re.IGNORECASE)
_OVERDUE_VOCAB = re.compile(r"\b(overdue|past due|late)\b", re.IGNORECASE)

_NEXT_WEEK = re.compile(r"\bnext week\b", re.IGNORECASE)
_THIS_WEEK = re.compile(r"\b(this week|week)\b", re.IGNORECASE)
_THIS_MONTH = re.compile(r"\bthis month\b", re.IGNORECASE)

_SPECIFIC_TARGET = re.compile(
    r"\b(ps|hw|pset|project|lab|quiz|exam|midterm)\s*#?\s*(\d+)\b", re.IGNORECASE
)
_WORD_CHARS = re.compile(r"[^\w-]+")

_CATEGORY_WORDS = {
    "assignments": "assignment",
    "announcements": "announcement",
    "files": "file",
}

QUERY_PROMPT = """You are a Canvas LMS query processor. Analyze the user's natural language query and extract specific search parameters.

{course_context}

User Query: "{query}"

Extract and return ONLY a JSON object with these fields:
{{
  "category": "assignments|announcements|files|courses|general",
  "scope_filter": "course_code or null",
  "time_filter": "this_week|next_week|this_month|past_due|null",
  "priority": "due_soon|overdue|high_priority|null",
  "keywords": ["keyword1", "keyword2"],
  "specific_targets": ["assignment_name", "file_name"],
  "intent": "find_assignments|check_deadlines|get_course_info|general_question"
}}

Examples:
- "What assignments are due this week in CMSC422?" -> {{"category": "assignments", "scope_filter": "CMSC422", "time_filter": "this_week", "priority": "due_soon", "keywords": ["assignments", "due"], "specific_targets": [], "intent": "find_assignments"}}
- "Tell me about PS5 in machine learning" -> {{"category": "assignments", "scope_filter": "CMSC422", "time_filter": null, "priority": null, "keywords": ["PS5", "problem set"], "specific_targets": ["PS5"], "intent": "find_assignments"}}
- "What courses am I taking?" -> {{"category": "courses", "scope_filter": null, "time_filter": null, "priority": null, "keywords": ["courses"], "specific_targets": [], "intent": "get_course_info"}}

Return ONLY the JSON object, no additional text."""


def _course_context(known_scopes: Sequence[CourseScope]) -> str:
    if not known_scopes:
        return "No course information available"
    courses = ", ".join(f"{scope.name or scope.id} ({scope.code or 'no code'})" for scope in known_scopes)
    return f"User's courses: {courses}"


def _match_scope(text: str, known_scopes: Sequence[CourseScope]) -> str | None:
    lowered = text.lower()
    for scope in known_scopes:
        for label in (scope.code, scope.name):
            if label and label.lower() in lowered:
                return scope.code or scope.id
    return None


def _time_filter(text: str) -> str | None:
    if _NEXT_WEEK.search(text):
        return "next_week"
    if _THIS_WEEK.search(text):
        return "this_week"
    if _THIS_MONTH.search(text):
        return "this_month"
    if _OVERDUE_VOCAB.search(text):
        return "past_due"
    if _DEADLINE_VOCAB.search(text):
        return "this_week"
    return None


def _specific_targets(text: str) -> list[str]:
    targets = []
    for prefix, number in _SPECIFIC_TARGET.findall(text):
        prefix = prefix.lower()
        target = f"{prefix.upper()}{number}" if prefix in ("ps", "hw", "pset") else f"{prefix.title()} {number}"
        if target not in targets:
            targets.append(target)
    return targets


def fallback_intent(text: str, known_scopes: Sequence[CourseScope] = ()) -> SearchIntent:
    """Rule-based classification. Total: returns a valid intent for any string."""
    text = text or ""

    is_assignment = bool(_ASSIGNMENT_VOCAB.search(text))
    is_announcement = bool(_ANNOUNCEMENT_VOCAB.search(text))
    is_file = bool(_FILE_VOCAB.search(text))
    is_course = bool(_COURSE_VOCAB.search(text))

    if is_assignment:
        category = "assignments"
    elif is_announcement:
        category = "announcements"
    elif is_file:
        category = "files"
    elif is_course:
        category = "courses"
    else:
        category = "general"

    if _OVERDUE_VOCAB.search(text):
        priority = "overdue"
    elif _URGENT_VOCAB.search(text):
        priority = "due_soon"
    else:
        priority = None

    if is_assignment:
        intent = "find_assignments"
    elif _DEADLINE_VOCAB.search(text) or priority == "overdue":
        intent = "check_deadlines"
    elif is_course:
        intent = "get_course_info"
    else:
        intent = "general_question"

    keywords = []
    for word in text.split():
        cleaned = _WORD_CHARS.sub("", word).strip("-_")
        if len(cleaned) > 2:
            keywords.append(cleaned)

    return SearchIntent(
        category=category,
        scope_filter=_match_scope(text, known_scopes),
        time_filter=_time_filter(text),
        priority=priority,
        keywords=keywords,
        specific_targets=_specific_targets(text),
        intent=intent,
    )


def summarize(intent: SearchIntent) -> str:
    """Short human-readable restatement of an intent."""
    parts = []
    if intent.category != "general":
        parts.append(f"Looking for {intent.category}")
    if intent.scope_filter:
        parts.append(f"in {intent.scope_filter}")
    if intent.time_filter:
        parts.append(f"for {intent.time_filter.replace('_', ' ')}")
    if intent.specific_targets:
        parts.append(f"specifically: {', '.join(intent.specific_targets)}")
    return " ".join(parts) if parts else "General search"


def build_search_plan(intent: SearchIntent, raw_query: str) -> SearchPlan:
    """Query string and result limit for the content collection."""
    if intent.is_targeted:
        query = " ".join([*intent.specific_targets, *intent.keywords])
        return SearchPlan(query=query, limit=TARGETED_LIMIT)

    if intent.intent == "get_course_info" or intent.category == "courses":
        return SearchPlan(query=raw_query, limit=COURSE_INFO_LIMIT)

    category_word = _CATEGORY_WORDS.get(intent.category)
    if category_word:
        base = " ".join(intent.keywords) or raw_query
        return SearchPlan(query=f"{base} {category_word}".strip(), limit=DEFAULT_LIMIT)

    return SearchPlan(query=raw_query, limit=DEFAULT_LIMIT)


class QueryAnalyzer:
    def __init__(self, generator: OpenAIService | None = None, model: str | None = None):
        self.generator = generator or openai_service
        self.model = model or settings.OPENAI_QUERY_MODEL

    async def analyze(self, text: str, known_scopes: Sequence[CourseScope] = ()) -> SearchIntent:
        start = time.perf_counter()

        if not self.generator.is_configured:
            intent = fallback_intent(text, known_scopes)
            log_pipeline_stage("assistant", "analyze", (time.perf_counter() - start) * 1000, mode="rules")
            return intent

        try:
            response = await self.generator.complete(
                [{"role": "user", "content": QUERY_PROMPT.format(
                    course_context=_course_context(known_scopes), query=text
                )}],
                model=self.model,
                max_tokens=200,
                temperature=0.1,
                json_mode=True,
            )
            intent = self._parse(response)
        except Exception as e:
            logger.warning(
                "Query analysis failed, using rule-based fallback",
                error=str(e),
                error_type=type(e).__name__,
            )
            intent = fallback_intent(text, known_scopes)
            log_pipeline_stage(
                "assistant", "analyze", (time.perf_counter() - start) * 1000, ok=False, mode="rules"
            )
            return intent

        log_pipeline_stage(
            "assistant",
            "analyze",
            (time.perf_counter() - start) * 1000,
            mode="model",
            category=intent.category,
            scope_filter=intent.scope_filter,
        )
        return intent

    @staticmethod
    def _parse(response: str) -> SearchIntent:
        """
        Validate the first decodable JSON object in the model response.

        Decoding stops at the end of that object, so prose or braces after it
        are ignored.
        """
        text = response or ""
        start = text.find("{")
        while start != -1:
            try:
                payload, _ = _JSON_DECODER.raw_decode(text, start)
            except json.JSONDecodeError:
                start = text.find("{", start + 1)
                continue
            try:
                return SearchIntent.model_validate(payload)
            except ValidationError as e:
                logger.debug("Unusable query analysis response", raw_response=text[:200])
                raise ValueError(f"Invalid query analysis response: {e}") from e
        raise ValueError("No JSON object in query analysis response")


query_analyzer = QueryAnalyzer()
