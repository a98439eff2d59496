"""
Context retrieval for the course assistant.

Searches course content, past conversations and recording summaries in
parallel, each filtered to the user (and course, when one is in scope).
"""

import asyncio
import time
from collections.abc import Callable, Sequence

from coursepilot.config import settings
from coursepilot.features.assistant.query_analyzer import build_search_plan
from coursepilot.infrastructure.observability.logging import get_logger, log_pipeline_stage
from coursepilot.models.domain.chat_domain import (
    CourseScope,
    DocumentSource,
    RetrievedDocument,
    SearchIntent,
)
from coursepilot.services.vector_store import VectorStore, get_vector_store

logger = get_logger(__name__)


def resolve_scope_id(
    intent: SearchIntent, scope_id: str | None, known_scopes: Sequence[CourseScope]
) -> str | None:
    """Map the intent's course code to a known course id, else keep the caller's."""
    if intent.scope_filter:
        wanted = intent.scope_filter.lower()
        for scope in known_scopes:
            if wanted in ((scope.code or "").lower(), (scope.name or "").lower(), scope.id.lower()):
                return scope.id
    return scope_id


class ContextRetriever:
    def __init__(
        self,
        vector_store_factory: Callable[[], VectorStore] = get_vector_store,
        history_limit: int = settings.CHAT_HISTORY_SEARCH_LIMIT,
        recording_limit: int = settings.RECORDING_SEARCH_LIMIT,
    ):
        self.vector_store_factory = vector_store_factory
        self.history_limit = history_limit
        self.recording_limit = recording_limit

    async def retrieve(
        self,
        intent: SearchIntent,
        raw_query: str,
        user_id: str,
        scope_id: str | None = None,
        known_scopes: Sequence[CourseScope] = (),
    ) -> list[RetrievedDocument]:
        """
        Content results first, then conversation history, then recordings.

        A failing collection contributes no results; the others still return.
        """
        start = time.perf_counter()
        store = self.vector_store_factory()
        plan = build_search_plan(intent, raw_query)
        conditions = {
            "user_id": user_id,
            "scope_id": resolve_scope_id(intent, scope_id, known_scopes),
        }

        content, history, recordings = await asyncio.gather(
            self._search(store, settings.QDRANT_CONTENT_COLLECTION, plan.query, plan.limit, conditions, "content"),
            self._search(
                store, settings.QDRANT_CHAT_COLLECTION, raw_query, self.history_limit, conditions, "conversation"
            ),
            self._search(
                store,
                settings.QDRANT_RECORDING_COLLECTION,
                raw_query,
                self.recording_limit,
                conditions,
                "recording",
            ),
        )

        log_pipeline_stage(
            "assistant",
            "retrieve",
            (time.perf_counter() - start) * 1000,
            scope_id=conditions["scope_id"],
            content=len(content),
            conversations=len(history),
            recordings=len(recordings),
        )
        return [*content, *history, *recordings]

    @staticmethod
    async def _search(
        store: VectorStore,
        collection: str,
        query: str,
        limit: int,
        conditions: dict,
        source: DocumentSource,
    ) -> list[RetrievedDocument]:
        try:
            return await store.search(collection, query, limit, conditions, source=source)
        except Exception as e:
            logger.warning("Context search failed", collection=collection, error=str(e))
            return []


context_retriever = ContextRetriever()
