"""Conversation and message persistence."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Optional

from billing_copilot.core.types import ConversationStatus, MessageRole
from billing_copilot.log import get_logger
from billing_copilot.storage.database import Database
from billing_copilot.storage.models import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    Message,
    utcnow,
)

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 80


class ConversationRepository:
    """Append-only message log grouped by conversation."""

    def __init__(self, db: Database):
        self._db = db

    async def ensure_conversation(self, user_id: str, conversation_id: Optional[str] = None) -> Conversation:
        """Return the user's conversation, creating a fresh one when the id is unknown."""
        if conversation_id:
            cursor = await self._db.conn.execute(
                "SELECT * FROM conversations WHERE id = ? AND user_id = ?",
                (conversation_id, user_id),
            )
            row = await cursor.fetchone()
            if row is not None:
                return self._row_to_conversation(row)

        now = utcnow().isoformat()
        conversation = Conversation(id=uuid.uuid4().hex, user_id=user_id)
        await self._db.conn.execute(
            """INSERT INTO conversations (id, user_id, title, status, created_at, last_activity_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (conversation.id, user_id, conversation.title, conversation.status.value, now, now),
        )
        await self._db.conn.commit()
        logger.info("conversation_created", conversation_id=conversation.id)
        return conversation

    async def load_messages(self, user_id: str, conversation_id: str) -> list[Message]:
        """All messages of a conversation in append order."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM messages
               WHERE user_id = ? AND conversation_id = ?
               ORDER BY created_at ASC, seq ASC""",
            (user_id, conversation_id),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: list[dict[str, Any]],
        tool_name: Optional[str] = None,
        tool_call_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message | None:
        """Persist a message. Empty content is not stored and yields None."""
        if not content:
            return None
        message = Message(
            id=uuid.uuid4().hex,
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            metadata=metadata,
        )
        created_at = message.created_at.isoformat()
        await self._db.conn.execute(
            """INSERT INTO messages
               (id, conversation_id, user_id, role, content_json, tool_name,
                tool_call_id, metadata_json, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                message.id,
                conversation_id,
                user_id,
                role.value,
                json.dumps(content, ensure_ascii=False),
                tool_name,
                tool_call_id,
                json.dumps(metadata, ensure_ascii=False, default=str) if metadata is not None else None,
                created_at,
            ),
        )
        await self._db.conn.execute(
            "UPDATE conversations SET last_activity_at = ? WHERE id = ?",
            (created_at, conversation_id),
        )
        await self._db.conn.commit()
        return message

    async def touch_conversation_title(self, user_id: str, conversation_id: str, candidate: str) -> None:
        """Replace the default title with the first meaningful user text."""
        title = candidate.strip()[:TITLE_MAX_LENGTH]
        if not title:
            return
        await self._db.conn.execute(
            "UPDATE conversations SET title = ? WHERE id = ? AND user_id = ? AND title = ?",
            (title, conversation_id, user_id, DEFAULT_CONVERSATION_TITLE),
        )
        await self._db.conn.commit()

    async def recent_tool_messages(
        self, user_id: str, conversation_id: str, tool_name: str, limit: int
    ) -> list[Message]:
        """Newest-first tool messages of one tool that carry metadata."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM messages
               WHERE user_id = ? AND conversation_id = ? AND role = 'tool'
                 AND tool_name = ? AND metadata_json IS NOT NULL
               ORDER BY created_at DESC, seq DESC
               LIMIT ?""",
            (user_id, conversation_id, tool_name, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            status=ConversationStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            last_activity_at=datetime.fromisoformat(row["last_activity_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> Message:
        metadata = json.loads(row["metadata_json"]) if row["metadata_json"] else None
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            user_id=row["user_id"],
            role=MessageRole(row["role"]),
            content=json.loads(row["content_json"]),
            tool_name=row["tool_name"],
            tool_call_id=row["tool_call_id"],
            metadata=metadata if isinstance(metadata, dict) else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
