"""
Qdrant-backed vector store for course content, past conversations and
recording summaries.

Every point carries user_id and scope_id in its payload so searches can be
constrained with equality filters. Point ids are derived from stable keys, so
re-indexing the same item overwrites it instead of duplicating it.
"""

import re
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    VectorParams,
)

from coursepilot.config import settings
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.domain.canvas_domain import AnnouncementRow, AssignmentRow, FileRow
from coursepilot.models.domain.chat_domain import (
    Conversation,
    ConversationTurn,
    DocumentSource,
    RetrievedDocument,
)
from coursepilot.models.domain.recording_domain import RecordingJob
from coursepilot.services.openai_service import OpenAIService, openai_service

logger = get_logger(__name__)

NAMESPACE = uuid.UUID("5b0f7c1e-3d2a-4c8e-9f61-2a7d9e4b8c10")
EMBED_BATCH_SIZE = 64
MAX_TEXT_CHARS = 8000

_HTML_TAG = re.compile(r"<[^>]+>")


class VectorStoreError(Exception):
    """Raised when a vector store read or write fails."""

    def __init__(self, message: str, collection: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.collection = collection
        self.recoverable = recoverable


def stable_point_id(key: str) -> str:
    """Deterministic UUID string for a point key."""
    return str(uuid.uuid5(NAMESPACE, key))


def build_filter(conditions: dict[str, Any]) -> Filter | None:
    """AND of equality predicates; None values are skipped."""
    must = [
        FieldCondition(key=key, match=MatchValue(value=value))
        for key, value in conditions.items()
        if value is not None
    ]
    return Filter(must=must) if must else None


class VectorStore:
    def __init__(
        self,
        client: AsyncQdrantClient | None = None,
        embedder: OpenAIService | None = None,
    ):
        self.client = client or AsyncQdrantClient(url=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY)
        self.embedder = embedder or openai_service
        self._ensured: set[str] = set()

    async def close(self) -> None:
        await self.client.close()

    async def _ensure_collection(self, collection: str, vector_size: int) -> None:
        """Create the collection if it does not exist yet."""
        if collection in self._ensured:
            return
        if not await self.client.collection_exists(collection):
            await self.client.create_collection(
                collection_name=collection,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
            )
            logger.info("Vector collection created", collection=collection, vector_size=vector_size)
        self._ensured.add(collection)

    async def search(
        self,
        collection: str,
        query: str,
        limit: int,
        conditions: dict[str, Any],
        source: DocumentSource = "content",
    ) -> list[RetrievedDocument]:
        """
        Similarity search in one collection, most similar first.

        Raises:
            VectorStoreError: If embedding or the Qdrant query fails
        """
        if limit < 1 or not query.strip():
            return []

        try:
            vectors = await self.embedder.embed([query])
            response = await self.client.query_points(
                collection_name=collection,
                query=vectors[0],
                limit=limit,
                with_payload=True,
                query_filter=build_filter(conditions),
            )
        except Exception as e:
            logger.error("Vector search failed", collection=collection, error=str(e))
            raise VectorStoreError(f"Search in {collection} failed: {e}", collection=collection) from e

        return [self._to_document(point, source) for point in response.points or []]

    @staticmethod
    def _to_document(point: Any, source: DocumentSource) -> RetrievedDocument:
        payload = point.payload or {}
        scope_id = payload.get("scope_id")
        score = getattr(point, "score", None)
        return RetrievedDocument(
            title=payload.get("title") or "",
            body=payload.get("text") or "",
            category=payload.get("category") or source,
            scope_id=str(scope_id) if scope_id is not None else None,
            external_id=payload.get("external_id"),
            source=source,
            score=float(score) if score is not None else None,
        )

    async def upsert(self, collection: str, records: Sequence[tuple[str, str, dict[str, Any]]]) -> int:
        """
        Embed and upsert (point_key, text, payload) records in batches.

        Returns the number of points written.
        """
        records = [record for record in records if record[1].strip()]
        if not records:
            return 0

        total = 0
        try:
            for start in range(0, len(records), EMBED_BATCH_SIZE):
                batch = records[start : start + EMBED_BATCH_SIZE]
                texts = [text[:MAX_TEXT_CHARS] for _, text, _ in batch]
                vectors = await self.embedder.embed(texts)
                await self._ensure_collection(collection, len(vectors[0]))

                points = [
                    PointStruct(
                        id=stable_point_id(key),
                        vector=vector,
                        payload={**payload, "text": text},
                    )
                    for (key, _, payload), text, vector in zip(batch, texts, vectors, strict=True)
                ]
                await self.client.upsert(collection_name=collection, points=points)
                total += len(points)
        except Exception as e:
            logger.error("Vector upsert failed", collection=collection, written=total, error=str(e))
            raise VectorStoreError(f"Upsert into {collection} failed: {e}", collection=collection) from e

        logger.info("Vectors upserted", collection=collection, count=total)
        return total

    async def index_conversation(
        self, conversation: Conversation, turns: Sequence[ConversationTurn]
    ) -> int:
        """Index each user/assistant exchange of a conversation."""
        records = []
        pair_index = 0
        for question, answer in _exchanges(turns):
            records.append(
                (
                    f"conversation:{conversation.id}:{pair_index}",
                    f"Q: {question.content}\nA: {answer.content}",
                    {
                        "user_id": conversation.user_id,
                        "scope_id": conversation.scope_id,
                        "category": "conversation",
                        "title": conversation.title,
                        "external_id": conversation.id,
                        "created_at": question.created_at.isoformat(),
                    },
                )
            )
            pair_index += 1

        return await self.upsert(settings.QDRANT_CHAT_COLLECTION, records)

    async def index_recording(self, job: RecordingJob) -> int:
        text = job.summary or ""
        if job.transcript:
            text = f"{text}\n\nTranscript excerpt:\n{job.transcript[:2000]}"
        record = (
            f"recording:{job.id}",
            text,
            {
                "user_id": job.user_id,
                "scope_id": job.scope_id,
                "category": "recording",
                "title": job.title,
                "external_id": job.id,
                "duration_seconds": job.duration_seconds,
            },
        )
        return await self.upsert(settings.QDRANT_RECORDING_COLLECTION, [record])

    async def index_canvas_content(
        self,
        user_id: str,
        assignments: Iterable[AssignmentRow] = (),
        announcements: Iterable[AnnouncementRow] = (),
        files: Iterable[FileRow] = (),
    ) -> int:
        """Index dashboard rows into the content collection."""
        records = []

        for row in assignments:
            records.append(
                _content_record(
                    user_id, "assignment", row.id, row.course_id, row.name,
                    row.raw.get("description") or row.name,
                    due_at=row.due_at.isoformat() if row.due_at else None,
                    points_possible=row.raw.get("points_possible"),
                )
            )
        for row in announcements:
            posted = row.posted_at or row.created_at
            records.append(
                _content_record(
                    user_id, "announcement", row.id, row.course_id, row.title,
                    row.raw.get("message") or row.title,
                    posted_at=posted.isoformat() if posted else None,
                )
            )
        for row in files:
            records.append(
                _content_record(
                    user_id, "file", row.id, row.course_id, row.display_name,
                    f"{row.display_name} ({row.raw.get('content-type') or 'file'}) in {row.course_name}",
                    url=row.raw.get("url"),
                )
            )

        return await self.upsert(settings.QDRANT_CONTENT_COLLECTION, records)


def _content_record(
    user_id: str,
    category: str,
    external_id: Any,
    course_id: Any,
    title: str,
    text: str,
    **extra: Any,
) -> tuple[str, str, dict[str, Any]]:
    return (
        f"canvas:{user_id}:{category}:{external_id}",
        _strip_html(text or ""),
        {
            "user_id": user_id,
            "scope_id": str(course_id),
            "category": category,
            "title": title,
            "external_id": str(external_id),
            **extra,
        },
    )


def _exchanges(turns: Sequence[ConversationTurn]) -> Iterable[tuple[ConversationTurn, ConversationTurn]]:
    """Consecutive (user, assistant) pairs, skipping unmatched turns."""
    pending: ConversationTurn | None = None
    for turn in turns:
        if turn.role == "user":
            pending = turn
        elif turn.role == "assistant" and pending is not None:
            yield pending, turn
            pending = None


def _strip_html(text: str) -> str:
    # Canvas descriptions and messages are HTML fragments
    return " ".join(_HTML_TAG.sub(" ", text).split())


_vector_store: VectorStore | None = None


def get_vector_store() -> VectorStore:
    """Return the shared VectorStore, creating it on first use."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStore()
    return _vector_store


async def close_vector_store() -> None:
    global _vector_store
    if _vector_store is not None:
        await _vector_store.close()
        _vector_store = None
