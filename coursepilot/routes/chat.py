"""
Course assistant routes.
Streamed answers and conversation history.
"""

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from coursepilot.auth.verify import current_user_id
from coursepilot.db.helpers import DatabaseError
from coursepilot.features.assistant.pipeline import answer_pipeline
from coursepilot.features.dashboard.service import dashboard_service
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.api.chat_request import ChatRequest
from coursepilot.models.api.chat_response import (
    ConversationResponse,
    ConversationsListResponse,
    MessageResponse,
    MessagesListResponse,
)
from coursepilot.models.domain.chat_domain import Conversation, CourseScope
from coursepilot.repositories.conversation_repository import get_conversation_store
from coursepilot.services.canvas.session import session_registry
from coursepilot.services.openai_service import GenerationServiceError

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["assistant"])


async def _known_scopes(request: ChatRequest, user_id: str, session_id: str | None) -> list[CourseScope]:
    if request.courses is not None:
        return [CourseScope(id=c.id, code=c.code, name=c.name) for c in request.courses]

    session = session_registry.find(session_id, user_id)
    if session is None:
        return []
    try:
        cards = await dashboard_service.list_favorite_courses(session)
    except Exception as e:
        logger.warning("Could not load courses for chat context", user_id=user_id, error=str(e))
        return []
    return [CourseScope(id=str(card.id), code=card.course_code, name=card.name) for card in cards]


def _conversation_response(conversation: Conversation) -> ConversationResponse:
    return ConversationResponse(
        id=conversation.id,
        title=conversation.title,
        course_id=conversation.scope_id,
        created_at=conversation.created_at,
        updated_at=conversation.updated_at,
    )


@router.post("/chat")
async def chat(
    request: ChatRequest,
    user_id: str = Depends(current_user_id),
    x_session_id: str | None = Header(default=None),
):
    """Stream an answer as plain text; the conversation id is in X-Conversation-Id."""
    known_scopes = await _known_scopes(request, user_id, x_session_id)

    try:
        answer = await answer_pipeline.answer(
            user_id,
            request.message,
            scope_id=request.course_id,
            conversation_id=request.conversation_id,
            known_scopes=known_scopes,
        )
    except GenerationServiceError as e:
        logger.error("Answer generation failed", user_id=user_id, error=str(e), api_error=e.api_error)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY if e.recoverable else status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="AI response generation failed",
        ) from e
    except DatabaseError as e:
        logger.error("Conversation storage failed", user_id=user_id, error=str(e), operation=e.operation)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store conversation",
        ) from e

    return StreamingResponse(
        answer.chunks,
        media_type="text/plain; charset=utf-8",
        headers={"X-Conversation-Id": answer.conversation_id, "Cache-Control": "no-cache"},
    )


@router.get("/conversations", response_model=ConversationsListResponse)
async def list_conversations(
    course_id: str | None = Query(None, description="Only conversations for this course"),
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(current_user_id),
):
    try:
        conversations = await get_conversation_store().list_conversations(user_id, limit, course_id)
    except DatabaseError as e:
        logger.error("Failed to list conversations", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to list conversations",
        ) from e

    return ConversationsListResponse(
        conversations=[_conversation_response(c) for c in conversations],
        total_count=len(conversations),
    )


@router.get("/conversations/{conversation_id}/messages", response_model=MessagesListResponse)
async def list_messages(conversation_id: str, user_id: str = Depends(current_user_id)):
    store = get_conversation_store()
    try:
        conversation = await store.get_conversation(conversation_id, user_id)
        if conversation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
        turns = await store.all_turns(conversation.id)
    except DatabaseError as e:
        logger.error("Failed to load messages", conversation_id=conversation_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load messages",
        ) from e

    return MessagesListResponse(
        conversation_id=conversation.id,
        messages=[
            MessageResponse(role=t.role, content=t.content, created_at=t.created_at, metadata=t.metadata)
            for t in turns
        ],
    )
