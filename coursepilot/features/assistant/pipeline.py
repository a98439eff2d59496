"""
Streaming answer pipeline.

answer() does the conversation bookkeeping, builds the prompt from the
analyzed question, retrieved context and recent history, and opens the
generation stream. The returned chunks iterator forwards deltas as they
arrive; once it is exhausted the assistant turn is persisted and the
conversation re-indexed on the background queue.
"""

import time
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any

from coursepilot.config import settings
from coursepilot.features.assistant.prompt_builder import PromptAssembler, prompt_assembler
from coursepilot.features.assistant.query_analyzer import QueryAnalyzer, query_analyzer, summarize
from coursepilot.features.assistant.retriever import ContextRetriever, context_retriever, resolve_scope_id
from coursepilot.infrastructure.observability.logging import get_logger, log_pipeline_stage
from coursepilot.jobs.background import BackgroundTaskQueue, background_queue
from coursepilot.models.domain.chat_domain import Conversation, CourseScope
from coursepilot.repositories.conversation_repository import ConversationStore, get_conversation_store
from coursepilot.services.openai_service import GenerationServiceError, OpenAIService, openai_service
from coursepilot.services.vector_store import VectorStore, get_vector_store

logger = get_logger(__name__)

FALLBACK_SUMMARY = "Fallback response"


@dataclass(slots=True)
class AnswerStream:
    conversation_id: str
    summary: str
    chunks: AsyncIterator[str]


def conversation_title(question: str, length: int = settings.CONVERSATION_TITLE_LENGTH) -> str:
    text = " ".join(question.split())
    if not text:
        return "New conversation"
    return text if len(text) <= length else text[:length].rstrip() + "..."


class StreamingAnswerPipeline:
    def __init__(
        self,
        *,
        analyzer: QueryAnalyzer | None = None,
        retriever: ContextRetriever | None = None,
        assembler: PromptAssembler | None = None,
        generator: OpenAIService | None = None,
        store_factory: Callable[[], ConversationStore] = get_conversation_store,
        vector_store_factory: Callable[[], VectorStore] = get_vector_store,
        queue: BackgroundTaskQueue | None = None,
        history_limit: int = settings.CHAT_RECENT_CONTEXT_LIMIT,
    ):
        self.analyzer = analyzer or query_analyzer
        self.retriever = retriever or context_retriever
        self.assembler = assembler or prompt_assembler
        self.generator = generator or openai_service
        self.store_factory = store_factory
        self.vector_store_factory = vector_store_factory
        self.queue = queue or background_queue
        self.history_limit = history_limit

    async def answer(
        self,
        user_id: str,
        question: str,
        scope_id: str | None = None,
        conversation_id: str | None = None,
        known_scopes: Sequence[CourseScope] = (),
    ) -> AnswerStream:
        """
        Start answering a question.

        Raises:
            GenerationServiceError: If the generation stream cannot be opened
            DatabaseError: If the conversation cannot be resolved or written
        """
        start = time.perf_counter()
        store = self.store_factory()

        conversation = await self._resolve_conversation(store, user_id, question, scope_id, conversation_id)
        await store.append_turn(conversation.id, "user", question)

        metadata: dict[str, Any]
        try:
            messages, summary, metadata = await self._prepare(
                store, conversation, user_id, question, scope_id, known_scopes
            )
        except Exception as e:
            logger.warning(
                "Answer preparation failed, using minimal prompt",
                conversation_id=conversation.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            messages = self.assembler.build_minimal(question)
            summary = FALLBACK_SUMMARY
            metadata = {"fallback": True, "error": str(e)}

        log_pipeline_stage(
            "assistant",
            "prepare",
            (time.perf_counter() - start) * 1000,
            ok=not metadata.get("fallback", False),
            conversation_id=conversation.id,
            messages=len(messages),
        )

        # Opened here so a failure surfaces before any response bytes are sent
        try:
            first, deltas = await self._open_stream(messages)
        except GenerationServiceError as e:
            if metadata.get("fallback") or not e.recoverable:
                raise
            logger.warning(
                "Generation stream failed with full context, retrying with minimal prompt",
                conversation_id=conversation.id,
                error=str(e),
                api_error=e.api_error,
            )
            summary = FALLBACK_SUMMARY
            metadata = {"fallback": True, "error": str(e)}
            first, deltas = await self._open_stream(self.assembler.build_minimal(question))

        return AnswerStream(
            conversation_id=conversation.id,
            summary=summary,
            chunks=self._forward(store, conversation, first, deltas, metadata),
        )

    async def _open_stream(self, messages: list[dict[str, str]]) -> tuple[str, AsyncIterator[str]]:
        deltas = self.generator.stream(messages)
        try:
            first = await anext(deltas)
        except StopAsyncIteration:
            first = ""
        return first, deltas

    async def _resolve_conversation(
        self,
        store: ConversationStore,
        user_id: str,
        question: str,
        scope_id: str | None,
        conversation_id: str | None,
    ) -> Conversation:
        if conversation_id:
            conversation = await store.get_conversation(conversation_id, user_id)
            if conversation is not None:
                return conversation
            logger.warning(
                "Conversation not found for user, resolving latest",
                conversation_id=conversation_id,
                user_id=user_id,
            )

        conversation = await store.find_latest(user_id, scope_id)
        if conversation is not None:
            return conversation
        return await store.create_conversation(user_id, conversation_title(question), scope_id)

    async def _prepare(
        self,
        store: ConversationStore,
        conversation: Conversation,
        user_id: str,
        question: str,
        scope_id: str | None,
        known_scopes: Sequence[CourseScope],
    ) -> tuple[list[dict[str, str]], str, dict[str, Any]]:
        intent = await self.analyzer.analyze(question, known_scopes)
        documents = await self.retriever.retrieve(intent, question, user_id, scope_id, known_scopes)

        # The user turn just appended is the question itself
        history = await store.recent_turns(conversation.id, self.history_limit + 1)
        history = history[:-1]

        effective_scope = resolve_scope_id(intent, scope_id, known_scopes)
        scope = next((s for s in known_scopes if s.id == effective_scope), None)

        messages = self.assembler.build(question, intent, history, documents, scope)
        summary = summarize(intent)
        metadata = {
            "summary": summary,
            "intent": intent.intent,
            "category": intent.category,
            "sources": len(documents),
        }
        return messages, summary, metadata

    async def _forward(
        self,
        store: ConversationStore,
        conversation: Conversation,
        first: str,
        deltas: AsyncIterator[str],
        metadata: dict[str, Any],
    ) -> AsyncIterator[str]:
        parts: list[str] = []
        completed = False
        try:
            # Upstream stream is closed even when the client disconnects
            async with aclosing(deltas):
                if first:
                    parts.append(first)
                    yield first
                async for delta in deltas:
                    parts.append(delta)
                    yield delta
            completed = True
        finally:
            text = "".join(parts)
            if text:
                turn_metadata = metadata if completed else {**metadata, "partial": True}
                self.queue.submit(
                    "persist_assistant_turn",
                    lambda: self.persist_assistant_turn(store, conversation, text, turn_metadata),
                    conversation_id=conversation.id,
                )
            elif not completed:
                logger.warning("Answer stream ended before any content", conversation_id=conversation.id)

    async def persist_assistant_turn(
        self,
        store: ConversationStore,
        conversation: Conversation,
        text: str,
        metadata: dict[str, Any],
    ) -> None:
        """Append the assistant turn, then re-index the whole conversation."""
        await store.append_turn(conversation.id, "assistant", text, metadata)

        if not self.generator.is_configured:
            return
        try:
            turns = await store.all_turns(conversation.id)
            await self.vector_store_factory().index_conversation(conversation, turns)
        except Exception as e:
            logger.warning("Conversation re-index failed", conversation_id=conversation.id, error=str(e))


answer_pipeline = StreamingAnswerPipeline()
