"""
Course and dashboard routes.
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status

from coursepilot.features.dashboard.service import dashboard_service
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.api.canvas_response import CourseSummaryResponse, DashboardResponse
from coursepilot.routes.dependencies import canvas_http_error, current_session
from coursepilot.services.canvas.client import CanvasAPIError
from coursepilot.services.canvas.session import CanvasSession

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/courses")
async def list_courses(
    include_ended: bool = Query(False, description="Include concluded courses"),
    session: CanvasSession = Depends(current_session),
) -> list[dict[str, Any]]:
    try:
        return await session.client.list_courses(include_ended=include_ended)
    except CanvasAPIError as e:
        logger.error("Failed to list courses", session_id=session.id, error=str(e))
        raise canvas_http_error(e, "Failed to list courses") from e


@router.get("/courses/favorites", response_model=list[CourseSummaryResponse])
async def list_favorite_courses(session: CanvasSession = Depends(current_session)):
    """Dashboard courses with only the essential fields."""
    try:
        cards = await dashboard_service.list_favorite_courses(session)
    except CanvasAPIError as e:
        logger.error("Failed to fetch dashboard cards", session_id=session.id, error=str(e))
        raise canvas_http_error(e, "Failed to fetch dashboard cards") from e

    return [CourseSummaryResponse(**card.to_summary()) for card in cards]


@router.get("/courses/{course_id}")
async def get_course(course_id: int, session: CanvasSession = Depends(current_session)) -> dict[str, Any]:
    """Course details including term, teachers and syllabus."""
    try:
        return await session.client.get_course(course_id)
    except CanvasAPIError as e:
        logger.error("Failed to fetch course", session_id=session.id, course_id=course_id, error=str(e))
        raise canvas_http_error(e, "Failed to fetch course") from e


@router.get("/courses/{course_id}/modules")
async def list_course_modules(
    course_id: int, session: CanvasSession = Depends(current_session)
) -> list[dict[str, Any]]:
    try:
        return await session.client.list_modules(course_id)
    except CanvasAPIError as e:
        logger.error("Failed to list modules", session_id=session.id, course_id=course_id, error=str(e))
        raise canvas_http_error(e, "Failed to list modules") from e


@router.get("/files/{file_id}")
async def get_file(file_id: int, session: CanvasSession = Depends(current_session)) -> dict[str, Any]:
    """File metadata, including the Canvas download URL."""
    try:
        return await session.client.get_file(file_id)
    except CanvasAPIError as e:
        logger.error("Failed to fetch file", session_id=session.id, file_id=file_id, error=str(e))
        raise canvas_http_error(e, "Failed to fetch file") from e


@router.get("/upcoming")
async def list_upcoming(
    limit: int = Query(10, ge=1, le=50, description="Maximum events to request from Canvas"),
    session: CanvasSession = Depends(current_session),
) -> list[dict[str, Any]]:
    """Upcoming events that belong to an assignment."""
    try:
        return await session.client.get_upcoming_events(limit=limit)
    except CanvasAPIError as e:
        logger.error("Failed to fetch upcoming events", session_id=session.id, error=str(e))
        raise canvas_http_error(e, "Failed to fetch upcoming events") from e


@router.get("/dashboard", response_model=DashboardResponse)
async def get_dashboard(session: CanvasSession = Depends(current_session)):
    """
    Courses, assignments, announcements and files in one response.

    Only a failing dashboard cards call fails the request; category failures
    come back as partial or empty lists.
    """
    try:
        payload = await dashboard_service.build_dashboard(session)
    except CanvasAPIError as e:
        logger.error("Dashboard fetch failed", session_id=session.id, error=str(e))
        raise canvas_http_error(e, "Failed to fetch dashboard") from e
    except Exception as e:
        logger.error("Dashboard fetch failed", session_id=session.id, error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch dashboard",
        ) from e

    dashboard_service.schedule_index_sync(session.user_id, payload)
    return payload.to_dict()
