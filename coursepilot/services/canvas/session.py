"""
Canvas sessions.

A CanvasSession bundles the authenticated client with its request metrics. It
is created on login, looked up by id on every request, and closed on logout.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime

from coursepilot.config import settings
from coursepilot.core.batching import PerformanceMetrics
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.services.canvas.client import CanvasClient

logger = get_logger(__name__)


class SessionNotFoundError(Exception):
    """No live Canvas session for the given id (never created, or logged out)."""

    def __init__(self, session_id: str | None):
        super().__init__("Canvas session not found. Please authenticate with Canvas.")
        self.session_id = session_id
        self.recoverable = True


@dataclass
class CanvasSession:
    id: str
    user_id: str
    domain: str
    client: CanvasClient
    metrics: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    async def close(self) -> None:
        self.metrics.reset()
        await self.client.aclose()


class SessionRegistry:
    """In-process map of session id to CanvasSession."""

    def __init__(self):
        self._sessions: dict[str, CanvasSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(self, user_id: str, client: CanvasClient) -> CanvasSession:
        """
        Register a new session for the user.

        A user holds one live session: any earlier session is closed first so
        its HTTP client does not outlive the re-authentication.
        """
        for previous in [s for s in self._sessions.values() if s.user_id == user_id]:
            try:
                await self.remove(previous.id)
            except Exception as e:
                logger.error("Failed to close replaced Canvas session", session_id=previous.id, error=str(e))

        session = CanvasSession(
            id=uuid.uuid4().hex,
            user_id=user_id,
            domain=client.domain,
            client=client,
        )
        self._sessions[session.id] = session
        logger.info("Canvas session created", session_id=session.id, user_id=user_id, domain=session.domain)
        return session

    def get(self, session_id: str | None, user_id: str | None = None) -> CanvasSession:
        """
        Look up a live session.

        When user_id is given the session must belong to that user.

        Raises:
            SessionNotFoundError: If the session does not exist or belongs to someone else
        """
        session = self._sessions.get(session_id) if session_id else None
        if session is None or (user_id is not None and session.user_id != user_id):
            raise SessionNotFoundError(session_id)
        return session

    def find(self, session_id: str | None, user_id: str | None = None) -> CanvasSession | None:
        try:
            return self.get(session_id, user_id)
        except SessionNotFoundError:
            return None

    async def remove(self, session_id: str) -> bool:
        """Close and forget a session. Returns False if it was not registered."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False

        await session.close()
        logger.info("Canvas session closed", session_id=session_id, user_id=session.user_id)
        return True

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            try:
                await self.remove(session_id)
            except Exception as e:
                logger.error("Failed to close Canvas session", session_id=session_id, error=str(e))


def create_canvas_client(token: str, domain: str) -> CanvasClient:
    """Build a CanvasClient configured from settings."""
    return CanvasClient(token, domain, **settings.canvas_client_options())


# Singleton registry used by the HTTP layer
session_registry = SessionRegistry()
