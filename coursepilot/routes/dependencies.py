"""
Shared route dependencies and error mapping.
"""

from fastapi import Depends, Header, HTTPException, status

from coursepilot.auth.verify import current_user_id
from coursepilot.services.canvas.client import CanvasAPIError
from coursepilot.services.canvas.session import CanvasSession, SessionNotFoundError, session_registry


def current_session(
    user_id: str = Depends(current_user_id),
    x_session_id: str | None = Header(default=None),
) -> CanvasSession:
    """The caller's live Canvas session, addressed by the X-Session-Id header."""
    try:
        return session_registry.get(x_session_id, user_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e)) from e


def canvas_http_error(error: CanvasAPIError, detail: str) -> HTTPException:
    """401 when Canvas rejected the token, 404 for missing objects, 502 otherwise."""
    if error.is_auth_error:
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Canvas rejected the session token. Please authenticate again.",
        )
    if error.is_not_found:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{detail}: not found in Canvas")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"{detail}: {error}")
