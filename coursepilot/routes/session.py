"""
Canvas session routes.
Opening and closing a Canvas session, session status, request metrics and
the Canvas health check.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, status

from coursepilot.auth.verify import current_user_id
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.api.canvas_request import CanvasAuthRequest
from coursepilot.models.api.canvas_response import (
    AuthStatusResponse,
    CanvasAuthResponse,
    CanvasHealthResponse,
    LogoutResponse,
    PerformanceResponse,
)
from coursepilot.routes.dependencies import canvas_http_error, current_session
from coursepilot.services.canvas.client import CanvasAPIError
from coursepilot.services.canvas.session import CanvasSession, create_canvas_client, session_registry

logger = get_logger(__name__)

router = APIRouter(tags=["session"])


@router.post("/auth", response_model=CanvasAuthResponse)
async def open_session(request: CanvasAuthRequest, user_id: str = Depends(current_user_id)):
    """Validate Canvas credentials and open a session for them."""
    client = create_canvas_client(request.token, request.domain)

    try:
        health = await client.health_check()
    except CanvasAPIError as e:
        await client.aclose()
        logger.warning("Canvas authentication failed", user_id=user_id, domain=request.domain, error=str(e))
        raise canvas_http_error(e, "Could not reach Canvas") from e

    if health.get("status") != "ok":
        await client.aclose()
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    session = await session_registry.create(user_id, client)
    return CanvasAuthResponse(
        success=True,
        message="Authentication successful",
        session_id=session.id,
        domain=session.domain,
        user=health.get("user"),
    )


@router.post("/logout", response_model=LogoutResponse)
async def close_session(
    user_id: str = Depends(current_user_id),
    x_session_id: str | None = Header(default=None),
):
    session = session_registry.find(x_session_id, user_id)
    if session is None:
        return LogoutResponse(success=False, message="No active session")

    await session_registry.remove(session.id)
    return LogoutResponse(success=True, message="Logged out successfully")


@router.get("/auth/status", response_model=AuthStatusResponse)
async def session_status(
    user_id: str = Depends(current_user_id),
    x_session_id: str | None = Header(default=None),
):
    session = session_registry.find(x_session_id, user_id)
    return AuthStatusResponse(
        authenticated=session is not None,
        domain=session.domain if session else None,
    )


@router.get("/api/performance", response_model=PerformanceResponse)
async def performance(session: CanvasSession = Depends(current_session)):
    """Request counters for this session since it was opened."""
    return PerformanceResponse(
        **session.metrics.snapshot(),
        active_requests=session.client.active_requests,
    )


@router.get("/api/health", response_model=CanvasHealthResponse)
async def canvas_health(session: CanvasSession = Depends(current_session)):
    try:
        health = await session.client.health_check()
    except CanvasAPIError as e:
        logger.error("Canvas health check failed", session_id=session.id, error=str(e))
        raise canvas_http_error(e, "Canvas health check failed") from e
    return CanvasHealthResponse(**health)
