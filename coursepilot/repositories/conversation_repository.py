"""
Persistence for assistant conversations and their messages.

Messages are append-only; appending a message also bumps the parent
conversation's updated_at so "most recent conversation" lookups stay correct.
"""

import json
import uuid
from datetime import UTC, datetime
from typing import Any, Protocol

from coursepilot.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one
from coursepilot.db.pool import db_pool
from coursepilot.infrastructure.observability.logging import get_logger
from coursepilot.models.domain.chat_domain import Conversation, ConversationTurn, Role

logger = get_logger(__name__)


class ConversationStore(Protocol):
    async def create_conversation(
        self, user_id: str, title: str, scope_id: str | None = None
    ) -> Conversation: ...

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None: ...

    async def find_latest(self, user_id: str, scope_id: str | None) -> Conversation | None: ...

    async def list_conversations(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[Conversation]: ...

    async def append_turn(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationTurn: ...

    async def recent_turns(self, conversation_id: str, limit: int) -> list[ConversationTurn]: ...

    async def all_turns(self, conversation_id: str) -> list[ConversationTurn]: ...


class ConversationRepository:
    """Postgres-backed ConversationStore (conversations + messages tables)."""

    CONVERSATION_COLUMNS = "id, user_id, course_id, title, created_at, updated_at"
    MESSAGE_COLUMNS = "conversation_id, role, content, metadata, created_at"

    @staticmethod
    def _row_to_conversation(row: dict) -> Conversation:
        course_id = row.get("course_id")
        return Conversation(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            scope_id=str(course_id) if course_id is not None else None,
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_turn(row: dict) -> ConversationTurn:
        metadata = row.get("metadata") or {}
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        return ConversationTurn(
            conversation_id=str(row["conversation_id"]),
            role=row["role"],
            content=row["content"],
            created_at=row["created_at"],
            metadata=metadata,
        )

    async def create_conversation(
        self, user_id: str, title: str, scope_id: str | None = None
    ) -> Conversation:
        query = f"""
            INSERT INTO conversations (user_id, course_id, title)
            VALUES (%s, %s, %s)
            RETURNING {self.CONVERSATION_COLUMNS}
        """
        row = await fetch_one(query, (user_id, scope_id, title))
        if not row:
            raise DatabaseError("Failed to create conversation", operation="create_conversation")

        logger.info("Conversation created", conversation_id=str(row["id"]), user_id=user_id, scope_id=scope_id)
        return self._row_to_conversation(row)

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        query = f"""
            SELECT {self.CONVERSATION_COLUMNS}
            FROM conversations
            WHERE id = %s AND user_id = %s
        """
        row = await fetch_one(query, (conversation_id, user_id))
        return self._row_to_conversation(row) if row else None

    async def find_latest(self, user_id: str, scope_id: str | None) -> Conversation | None:
        """Most recently updated conversation for this user and course."""
        if scope_id is None:
            query = f"""
                SELECT {self.CONVERSATION_COLUMNS}
                FROM conversations
                WHERE user_id = %s AND course_id IS NULL
                ORDER BY updated_at DESC
                LIMIT 1
            """
            params: tuple = (user_id,)
        else:
            query = f"""
                SELECT {self.CONVERSATION_COLUMNS}
                FROM conversations
                WHERE user_id = %s AND course_id = %s
                ORDER BY updated_at DESC
                LIMIT 1
            """
            params = (user_id, scope_id)

        row = await fetch_one(query, params)
        return self._row_to_conversation(row) if row else None

    async def list_conversations(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[Conversation]:
        if scope_id is None:
            query = f"""
                SELECT {self.CONVERSATION_COLUMNS}
                FROM conversations
                WHERE user_id = %s
                ORDER BY updated_at DESC
                LIMIT %s
            """
            params: tuple = (user_id, limit)
        else:
            query = f"""
                SELECT {self.CONVERSATION_COLUMNS}
                FROM conversations
                WHERE user_id = %s AND course_id = %s
                ORDER BY updated_at DESC
                LIMIT %s
            """
            params = (user_id, scope_id, limit)

        rows = await fetch_all(query, params)
        return [self._row_to_conversation(row) for row in rows]

    async def append_turn(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationTurn:
        insert_query = f"""
            INSERT INTO messages (conversation_id, role, content, metadata)
            VALUES (%s, %s, %s, %s::jsonb)
            RETURNING {self.MESSAGE_COLUMNS}
        """
        touch_query = "UPDATE conversations SET updated_at = NOW() WHERE id = %s"

        try:
            async with db_pool.transaction() as conn:
                row = await fetch_one(
                    insert_query,
                    (conversation_id, role, content, json.dumps(metadata or {})),
                    connection=conn,
                )
                await execute_query(touch_query, (conversation_id,), connection=conn)
        except DatabaseError:
            raise
        except Exception as e:
            logger.error("Failed to append message", conversation_id=conversation_id, error=str(e))
            raise DatabaseError(f"Failed to append message: {e}", operation="append_turn") from e

        if not row:
            raise DatabaseError("Failed to append message", operation="append_turn")
        return self._row_to_turn(row)

    async def recent_turns(self, conversation_id: str, limit: int) -> list[ConversationTurn]:
        """Last `limit` messages, oldest first."""
        query = f"""
            SELECT {self.MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = %s
            ORDER BY created_at DESC
            LIMIT %s
        """
        rows = await fetch_all(query, (conversation_id, limit))
        return [self._row_to_turn(row) for row in reversed(rows)]

    async def all_turns(self, conversation_id: str) -> list[ConversationTurn]:
        query = f"""
            SELECT {self.MESSAGE_COLUMNS}
            FROM messages
            WHERE conversation_id = %s
            ORDER BY created_at ASC
        """
        rows = await fetch_all(query, (conversation_id,))
        return [self._row_to_turn(row) for row in rows]


class InMemoryConversationStore:
    """
    Process-local ConversationStore used when no database is configured.

    History is lost on restart; chat still works with per-process context.
    """

    def __init__(self):
        self._conversations: dict[str, Conversation] = {}
        self._turns: dict[str, list[ConversationTurn]] = {}

    async def create_conversation(
        self, user_id: str, title: str, scope_id: str | None = None
    ) -> Conversation:
        now = datetime.now(UTC)
        conversation = Conversation(
            id=str(uuid.uuid4()),
            user_id=user_id,
            scope_id=scope_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        self._conversations[conversation.id] = conversation
        self._turns[conversation.id] = []
        return conversation

    async def get_conversation(self, conversation_id: str, user_id: str) -> Conversation | None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.user_id != user_id:
            return None
        return conversation

    async def find_latest(self, user_id: str, scope_id: str | None) -> Conversation | None:
        candidates = [
            c for c in self._conversations.values() if c.user_id == user_id and c.scope_id == scope_id
        ]
        return max(candidates, key=lambda c: c.updated_at, default=None)

    async def list_conversations(
        self, user_id: str, limit: int = 20, scope_id: str | None = None
    ) -> list[Conversation]:
        conversations = [
            c
            for c in self._conversations.values()
            if c.user_id == user_id and (scope_id is None or c.scope_id == scope_id)
        ]
        conversations.sort(key=lambda c: c.updated_at, reverse=True)
        return conversations[:limit]

    async def append_turn(
        self,
        conversation_id: str,
        role: Role,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ConversationTurn:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise DatabaseError(f"Unknown conversation {conversation_id}", operation="append_turn")

        turns = self._turns[conversation_id]
        now = datetime.now(UTC)
        if turns and now < turns[-1].created_at:
            now = turns[-1].created_at
        turn = ConversationTurn(
            conversation_id=conversation_id,
            role=role,
            content=content,
            created_at=now,
            metadata=dict(metadata or {}),
        )
        turns.append(turn)
        conversation.updated_at = now
        return turn

    async def recent_turns(self, conversation_id: str, limit: int) -> list[ConversationTurn]:
        if limit < 1:
            return []
        return list(self._turns.get(conversation_id, [])[-limit:])

    async def all_turns(self, conversation_id: str) -> list[ConversationTurn]:
        return list(self._turns.get(conversation_id, []))


_memory_store = InMemoryConversationStore()


def get_conversation_store() -> ConversationStore:
    """Postgres when the pool is up, otherwise the process-local store."""
    if db_pool.is_initialized:
        return ConversationRepository()
    return _memory_store
