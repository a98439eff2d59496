"""
Dashboard aggregation.

Pulls the user's dashboard courses, then fetches assignments, announcements
and files for those courses concurrently. Each category is a batched fan-out
over the courses with its own degraded fallback, so one failing category never
fails the dashboard.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from coursepilot.config import settings
from coursepilot.core.batching import BatchOrchestrator
from coursepilot.core.concurrency import Rejected, fulfilled_values
from coursepilot.infrastructure.observability.logging import get_logger, log_pipeline_stage
from coursepilot.jobs.background import BackgroundTaskQueue, background_queue
from coursepilot.models.domain.canvas_domain import (
    AnnouncementRow,
    AssignmentRow,
    CourseCard,
    DashboardPayload,
    DashboardPerformance,
    FileRow,
)
from coursepilot.services.canvas.client import CanvasAPIError, CanvasClient
from coursepilot.services.canvas.session import CanvasSession
from coursepilot.services.vector_store import VectorStore, get_vector_store

logger = get_logger(__name__)

R = TypeVar("R", AssignmentRow, AnnouncementRow, FileRow)


class CategoryUnavailableError(Exception):
    """Every course in a category fetch failed; treated as a systemic failure."""

    def __init__(self, category: str, cause: BaseException | None = None):
        super().__init__(f"No course returned {category}: {cause}")
        self.category = category
        self.cause = cause


@dataclass(frozen=True)
class CategorySpec(Generic[R]):
    name: str
    fetch: Callable[[CanvasClient, CourseCard], Awaitable[Any]]
    parse: Callable[[dict[str, Any], CourseCard], R]
    descending: bool
    max_rows: int


ASSIGNMENTS: CategorySpec[AssignmentRow] = CategorySpec(
    name="assignments",
    fetch=lambda client, card: client.list_assignments(card.id),
    parse=AssignmentRow.from_canvas,
    descending=False,
    max_rows=settings.DASHBOARD_MAX_ASSIGNMENTS,
)

ANNOUNCEMENTS: CategorySpec[AnnouncementRow] = CategorySpec(
    name="announcements",
    fetch=lambda client, card: client.list_course_announcements(card.id),
    parse=AnnouncementRow.from_canvas,
    descending=True,
    max_rows=settings.DASHBOARD_MAX_ANNOUNCEMENTS,
)

FILES: CategorySpec[FileRow] = CategorySpec(
    name="files",
    fetch=lambda client, card: client.list_files(card.id),
    parse=FileRow.from_canvas,
    descending=True,
    max_rows=settings.DASHBOARD_MAX_FILES,
)


def parse_course_cards(raw_cards: Any) -> list[CourseCard]:
    """Parse dashboard cards, skipping malformed entries."""
    if not isinstance(raw_cards, list):
        raise CanvasAPIError("Unexpected dashboard cards response", raw_body=raw_cards)

    cards = []
    for raw in raw_cards:
        try:
            cards.append(CourseCard.from_canvas(raw))
        except (ValueError, AttributeError) as e:
            logger.warning("Skipping malformed dashboard card", error=str(e))
    return cards


class DashboardAggregationService:
    def __init__(
        self,
        *,
        max_courses: int = settings.DASHBOARD_MAX_COURSES,
        batch_size: int = settings.DASHBOARD_BATCH_SIZE,
        inter_batch_delay: float = settings.DASHBOARD_BATCH_DELAY,
        fallback_courses: int = settings.DASHBOARD_FALLBACK_COURSES,
        files_max_courses: int = settings.DASHBOARD_FILES_MAX_COURSES,
        max_concurrent: int = settings.CANVAS_MAX_CONCURRENT_REQUESTS,
        queue: BackgroundTaskQueue | None = None,
        vector_store_factory: Callable[[], VectorStore] = get_vector_store,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_courses = max_courses
        self.batch_size = batch_size
        self.inter_batch_delay = inter_batch_delay
        self.fallback_courses = fallback_courses
        self.files_max_courses = files_max_courses
        self.max_concurrent = max_concurrent
        self.queue = queue or background_queue
        self.vector_store_factory = vector_store_factory
        self._sleep = sleep

    async def list_favorite_courses(self, session: CanvasSession) -> list[CourseCard]:
        raw_cards = await session.client.get_dashboard_cards()
        return parse_course_cards(raw_cards)

    async def build_dashboard(self, session: CanvasSession) -> DashboardPayload:
        """
        Build the consolidated dashboard for one session.

        Only the dashboard cards call can raise; category failures degrade to
        partial or empty lists.
        """
        start = time.perf_counter()

        raw_cards = await session.client.get_dashboard_cards()
        cards = parse_course_cards(raw_cards)[: self.max_courses]
        logger.info(
            "Dashboard cards fetched",
            session_id=session.id,
            courses=len(cards),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )

        if not cards:
            return self._payload(start, cards, [], [], [])

        orchestrator = BatchOrchestrator(session.metrics, self.max_concurrent, sleep=self._sleep)
        file_cards = cards[: min(self.files_max_courses, len(cards))]

        assignments, announcements, files = await asyncio.gather(
            self._fetch_category(ASSIGNMENTS, session.client, orchestrator, cards),
            self._fetch_category(ANNOUNCEMENTS, session.client, orchestrator, cards),
            self._fetch_category(FILES, session.client, orchestrator, file_cards),
        )

        payload = self._payload(start, cards, assignments, announcements, files)
        logger.info(
            "Dashboard fetch completed",
            session_id=session.id,
            total_time_ms=payload.performance.total_time_ms,
            courses_processed=payload.performance.courses_processed,
            assignments_count=payload.performance.assignments_count,
            announcements_count=payload.performance.announcements_count,
            files_count=payload.performance.files_count,
        )
        return payload

    def _payload(
        self,
        start: float,
        cards: list[CourseCard],
        assignments: list[AssignmentRow],
        announcements: list[AnnouncementRow],
        files: list[FileRow],
    ) -> DashboardPayload:
        return DashboardPayload(
            courses=cards,
            assignments=assignments[: ASSIGNMENTS.max_rows],
            announcements=announcements[: ANNOUNCEMENTS.max_rows],
            files=files[: FILES.max_rows],
            performance=DashboardPerformance(
                total_time_ms=round((time.perf_counter() - start) * 1000, 2),
                courses_processed=len(cards),
                assignments_count=len(assignments),
                announcements_count=len(announcements),
                files_count=len(files),
            ),
        )

    async def _fetch_category(
        self,
        spec: CategorySpec[R],
        client: CanvasClient,
        orchestrator: BatchOrchestrator,
        cards: Sequence[CourseCard],
    ) -> list[R]:
        """Primary fan-out over all cards, then a reduced retry, then empty."""
        if not cards:
            return []

        try:
            return await self._run_category(spec, client, orchestrator, cards)
        except Exception as e:
            fallback_cards = list(cards[: self.fallback_courses])
            logger.warning(
                "Dashboard category failed, using fallback",
                category=spec.name,
                degraded=True,
                fallback_courses=len(fallback_cards),
                error=str(e),
            )

        try:
            return await self._run_category(spec, client, orchestrator, fallback_cards, degraded=True)
        except Exception as e:
            logger.error(
                "Dashboard category fallback failed",
                category=spec.name,
                degraded=True,
                error=str(e),
            )
            return []

    async def _run_category(
        self,
        spec: CategorySpec[R],
        client: CanvasClient,
        orchestrator: BatchOrchestrator,
        cards: Sequence[CourseCard],
        degraded: bool = False,
    ) -> list[R]:
        start = time.perf_counter()

        async def worker(card: CourseCard) -> list[R]:
            raw_rows = await spec.fetch(client, card)
            if not isinstance(raw_rows, list):
                raise CanvasAPIError(f"Unexpected {spec.name} response", raw_body=raw_rows)
            return [spec.parse(raw, card) for raw in raw_rows if isinstance(raw, dict)]

        outcomes = await orchestrator.run_batches(
            cards, worker, self.batch_size, self.inter_batch_delay
        )

        failures = 0
        for card, outcome in zip(cards, outcomes, strict=True):
            if isinstance(outcome, Rejected):
                failures += 1
                logger.warning(
                    "Course fetch failed",
                    category=spec.name,
                    course_id=card.id,
                    error=str(outcome.reason),
                )

        if failures == len(outcomes):
            first_failure = next(o.reason for o in outcomes if isinstance(o, Rejected))
            raise CategoryUnavailableError(spec.name, first_failure)

        rows = [row for course_rows in fulfilled_values(outcomes) for row in course_rows]
        rows.sort(key=lambda row: row.sort_key, reverse=spec.descending)

        log_pipeline_stage(
            "dashboard",
            spec.name,
            (time.perf_counter() - start) * 1000,
            courses=len(cards),
            failed_courses=failures,
            rows=len(rows),
            degraded=degraded,
        )
        return rows

    def schedule_index_sync(self, user_id: str, payload: DashboardPayload) -> bool:
        """Queue re-indexing of the dashboard rows into the content collection."""
        if not settings.openai_configured():
            logger.debug("Skipping dashboard index sync, embeddings not configured", user_id=user_id)
            return False

        return self.queue.submit(
            "sync_dashboard_to_index",
            lambda: self.sync_dashboard_to_index(user_id, payload),
            user_id=user_id,
        )

    async def sync_dashboard_to_index(self, user_id: str, payload: DashboardPayload) -> int:
        start = time.perf_counter()
        indexed = await self.vector_store_factory().index_canvas_content(
            user_id,
            assignments=payload.assignments,
            announcements=payload.announcements,
            files=payload.files,
        )
        log_pipeline_stage(
            "dashboard", "index_sync", (time.perf_counter() - start) * 1000, user_id=user_id, indexed=indexed
        )
        return indexed


dashboard_service = DashboardAggregationService()
