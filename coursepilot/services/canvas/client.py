"""
Canvas LMS REST API client.
Handles bearer auth, Link-header pagination, retry with exponential backoff,
and admission control so a burst of callers cannot overwhelm Canvas.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx

from coursepilot.core.concurrency import ConcurrencyGate
from coursepilot.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30.0  # seconds
MAX_RETRIES = 3
RETRY_DELAY = 1.0  # seconds, doubled on every retry
MAX_CONCURRENT_REQUESTS = 12

_NEXT_LINK_PATTERN = re.compile(r"<([^>]+)>")


class RequestKind(Enum):
    """Whether a request may follow pagination links."""

    INITIAL = "initial"
    CONTINUATION = "continuation"


class CanvasAPIError(Exception):
    """Custom exception for Canvas API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        raw_body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.raw_body = raw_body

    @property
    def is_auth_error(self) -> bool:
        return self.status_code == 401

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404

    @property
    def is_transient(self) -> bool:
        return self.status_code is None or _is_retryable_status(self.status_code)


class CanvasTransportError(CanvasAPIError):
    """No response was received from Canvas after all retries."""

    def __init__(self, message: str):
        super().__init__(message, status_code=None)


@dataclass
class RetryState:
    """Attempt counter for one logical request, including its retries."""

    base_delay: float
    max_retries: int
    attempt: int = 0
    delay: float = 0.0

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def advance(self) -> float:
        self.attempt += 1
        self.delay = self.base_delay * (2 ** (self.attempt - 1))
        return self.delay


@dataclass
class _Page:
    data: Any
    next_url: str | None


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def parse_next_link(link_header: str | None) -> str | None:
    """Extract the rel="next" URL from a Link header, if any."""
    if not link_header:
        return None

    for link in link_header.split(","):
        if 'rel="next"' not in link:
            continue
        match = _NEXT_LINK_PATTERN.search(link)
        return match.group(1) if match else None

    return None


class CanvasClient:
    """
    Async client for one Canvas user.

    Every logical request holds one admission slot for its whole lifetime,
    retries and continuation pages included.
    """

    def __init__(
        self,
        token: str,
        domain: str,
        *,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS,
        timeout: float = REQUEST_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.domain = domain
        self.base_url = f"https://{domain}/api/v1"
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._queue = ConcurrencyGate(max_concurrent_requests)
        self._sleep = sleep
        self._client = self._create_client(token, timeout, max_concurrent_requests, transport)

    def _create_client(
        self,
        token: str,
        timeout: float,
        max_concurrent_requests: int,
        transport: httpx.AsyncBaseTransport | None,
    ) -> httpx.AsyncClient:
        """Create async HTTP client for the Canvas API."""
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        limits = httpx.Limits(
            max_keepalive_connections=max_concurrent_requests,
            max_connections=max_concurrent_requests * 2,
        )
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout),
            limits=limits,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    @property
    def active_requests(self) -> int:
        return self._queue.in_flight

    async def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        """
        Issue one logical request and return the fully materialized body.

        List responses with a next link are followed to the last page.

        Raises:
            CanvasAPIError: On a permanent failure or once retries are exhausted
        """
        async with self._queue.slot():
            page = await self._request(method, path, params=params, json=json)
            return page.data

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        kind: RequestKind = RequestKind.INITIAL,
    ) -> _Page:
        response = await self._send_with_retry(method, url, params=params, json=json)
        page = _Page(
            data=self._decode(response, url),
            next_url=parse_next_link(response.headers.get("link")),
        )

        if kind is RequestKind.CONTINUATION or not isinstance(page.data, list):
            return page

        items = list(page.data)
        next_url = page.next_url
        pages = 1
        while next_url:
            continuation = await self._request("GET", next_url, kind=RequestKind.CONTINUATION)
            if isinstance(continuation.data, list):
                items.extend(continuation.data)
            next_url = continuation.next_url
            pages += 1

        if pages > 1:
            logger.debug("Canvas pagination complete", url=url, pages=pages, items=len(items))

        return _Page(data=items, next_url=None)

    async def _send_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        retry = RetryState(base_delay=self.retry_delay, max_retries=self.max_retries)

        while True:
            logger.debug("Canvas API request", method=method, url=url, attempt=retry.attempt + 1)
            try:
                response = await self._client.request(method, url, params=params, json=json)
            except httpx.TransportError as e:
                if retry.exhausted:
                    logger.error(
                        "Canvas API unreachable",
                        method=method,
                        url=url,
                        attempts=retry.attempt + 1,
                        error=str(e),
                    )
                    raise CanvasTransportError(f"Canvas API unreachable: {e}") from e
                delay = retry.advance()
                logger.warning(
                    "Canvas API request error, retrying",
                    url=url,
                    attempt=retry.attempt,
                    max_retries=self.max_retries,
                    backoff_seconds=delay,
                    error=str(e),
                )
                await self._sleep(delay)
                continue

            if response.is_success:
                return response

            if _is_retryable_status(response.status_code) and not retry.exhausted:
                delay = retry.advance()
                logger.warning(
                    "Canvas API retrying request",
                    url=url,
                    status_code=response.status_code,
                    attempt=retry.attempt,
                    max_retries=self.max_retries,
                    backoff_seconds=delay,
                )
                await self._sleep(delay)
                continue

            raise self._to_api_error(response, url)

    def _decode(self, response: httpx.Response, url: str) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            logger.error("Failed to parse Canvas API response", url=url, error=str(e))
            raise CanvasAPIError(
                f"Invalid response format: {e}",
                status_code=response.status_code,
                raw_body=response.text[:500],
            ) from e

    def _to_api_error(self, response: httpx.Response, url: str) -> CanvasAPIError:
        try:
            body = response.json() if response.content else None
        except ValueError:
            body = response.text[:500]

        detail = None
        if isinstance(body, dict):
            detail = body.get("message")
            if not detail and isinstance(body.get("errors"), list) and body["errors"]:
                first = body["errors"][0]
                detail = first.get("message") if isinstance(first, dict) else str(first)
        if not detail:
            detail = str(body) if body else response.reason_phrase

        logger.error(
            "Canvas API request failed",
            url=url,
            status_code=response.status_code,
            error_message=detail,
        )
        return CanvasAPIError(
            f"Canvas API Error ({response.status_code}): {detail}",
            status_code=response.status_code,
            raw_body=body,
        )

    # ---------------------------------------------------------------------
    # Health
    # ---------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """
        Validate credentials with a "who am I" call.

        Returns {"status": "ok"|"error", "timestamp", "user"?}. API errors are
        reported as "error"; a transport failure after all retries propagates.
        """
        timestamp = datetime.now(UTC).isoformat()
        try:
            profile = await self.get_user_profile()
        except CanvasTransportError:
            raise
        except CanvasAPIError as e:
            logger.info("Canvas health check failed", domain=self.domain, status_code=e.status_code)
            return {"status": "error", "timestamp": timestamp}

        return {
            "status": "ok",
            "timestamp": timestamp,
            "user": {"id": profile.get("id"), "name": profile.get("name")},
        }

    # ---------------------------------------------------------------------
    # Endpoints
    # ---------------------------------------------------------------------

    async def get_user_profile(self) -> dict[str, Any]:
        return await self.request("GET", "/users/self/profile")

    async def list_courses(self, include_ended: bool = False) -> list[dict[str, Any]]:
        params: dict[str, Any] = {
            "include[]": ["total_students", "teachers", "term", "course_progress"],
        }
        if not include_ended:
            params["state[]"] = ["available", "completed"]
        return await self.request("GET", "/courses", params=params) or []

    async def get_course(self, course_id: int | str) -> dict[str, Any]:
        params = {"include[]": ["total_students", "teachers", "term", "syllabus_body"]}
        return await self.request("GET", f"/courses/{course_id}", params=params)

    async def get_dashboard_cards(self) -> list[dict[str, Any]]:
        return await self.request("GET", "/dashboard/dashboard_cards") or []

    async def list_assignments(self, course_id: int | str) -> list[dict[str, Any]]:
        params = {"include[]": ["assignment_group", "rubric", "due_at", "description"]}
        return await self.request("GET", f"/courses/{course_id}/assignments", params=params) or []

    async def list_course_announcements(self, course_id: int | str) -> list[dict[str, Any]]:
        params = {"only_announcements": "true", "include[]": ["assignment"]}
        return (
            await self.request("GET", f"/courses/{course_id}/discussion_topics", params=params)
            or []
        )

    async def list_files(self, course_id: int | str) -> list[dict[str, Any]]:
        return await self.request("GET", f"/courses/{course_id}/files") or []

    async def get_file(self, file_id: int | str) -> dict[str, Any]:
        return await self.request("GET", f"/files/{file_id}")

    async def list_modules(self, course_id: int | str) -> list[dict[str, Any]]:
        params = {"include[]": ["items"]}
        return await self.request("GET", f"/courses/{course_id}/modules", params=params) or []

    async def get_upcoming_events(self, limit: int = 10) -> list[dict[str, Any]]:
        """Upcoming events that are attached to an assignment."""
        events = await self.request("GET", "/users/self/upcoming_events", params={"limit": limit})
        return [event for event in events or [] if event.get("assignment")]
