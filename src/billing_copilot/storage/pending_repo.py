"""Pending tool calls awaiting user confirmation."""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from billing_copilot.log import get_logger
from billing_copilot.storage.database import Database
from billing_copilot.storage.models import PendingToolCall, utcnow

logger = get_logger(__name__)


class PendingToolCallRepository:
    """Single-use confirmation records with a time-to-live.

    ``consume`` deletes and returns the row in one statement, so the same id
    can never be consumed twice. Unknown, expired, foreign and already-used
    ids are indistinguishable to the caller: all yield ``None``.
    """

    def __init__(
        self,
        db: Database,
        ttl: timedelta = timedelta(minutes=30),
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db = db
        self._ttl = ttl
        self._clock = clock

    async def create(
        self,
        user_id: str,
        conversation_id: str,
        tool_name: str,
        summary: str,
        arguments: dict[str, Any],
    ) -> PendingToolCall:
        now = self._clock()
        pending = PendingToolCall(
            id=uuid.uuid4().hex,
            user_id=user_id,
            conversation_id=conversation_id,
            tool_name=tool_name,
            summary=summary,
            arguments=arguments,
            created_at=now,
            expires_at=now + self._ttl,
        )
        await self._db.conn.execute(
            """INSERT INTO pending_tool_calls
               (id, user_id, conversation_id, tool_name, summary, arguments_json, created_at, expires_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                pending.id,
                user_id,
                conversation_id,
                tool_name,
                summary,
                json.dumps(arguments, ensure_ascii=False, default=str),
                pending.created_at.isoformat(),
                pending.expires_at.isoformat(),
            ),
        )
        await self._db.conn.commit()
        logger.info("pending_created", pending_id=pending.id, tool=tool_name)
        return pending

    async def get(self, user_id: str, pending_id: str) -> PendingToolCall | None:
        """Look up an unexpired pending call without consuming it."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM pending_tool_calls WHERE id = ? AND user_id = ? AND expires_at > ?",
            (pending_id, user_id, self._clock().isoformat()),
        )
        row = await cursor.fetchone()
        return self._row_to_pending(row) if row is not None else None

    async def consume(
        self, user_id: str, pending_id: str, conversation_id: str | None = None
    ) -> PendingToolCall | None:
        """Delete and return the pending call.

        With ``conversation_id`` set, a record belonging to another
        conversation is left untouched and ``None`` is returned.
        """
        query = "DELETE FROM pending_tool_calls WHERE id = ? AND user_id = ? AND expires_at > ?"
        params: list[Any] = [pending_id, user_id, self._clock().isoformat()]
        if conversation_id is not None:
            query += " AND conversation_id = ?"
            params.append(conversation_id)
        cursor = await self._db.conn.execute(query + " RETURNING *", params)
        row = await cursor.fetchone()
        await cursor.close()
        await self._db.conn.commit()
        if row is None:
            logger.info("pending_not_found", pending_id=pending_id)
            return None
        logger.info("pending_consumed", pending_id=pending_id, tool=row["tool_name"])
        return self._row_to_pending(row)

    async def get_active(self, user_id: str, conversation_id: str) -> PendingToolCall | None:
        """Newest unexpired pending call of a conversation."""
        cursor = await self._db.conn.execute(
            """SELECT * FROM pending_tool_calls
               WHERE user_id = ? AND conversation_id = ? AND expires_at > ?
               ORDER BY created_at DESC
               LIMIT 1""",
            (user_id, conversation_id, self._clock().isoformat()),
        )
        row = await cursor.fetchone()
        return self._row_to_pending(row) if row is not None else None

    async def purge_expired(self) -> int:
        cursor = await self._db.conn.execute(
            "DELETE FROM pending_tool_calls WHERE expires_at <= ?",
            (self._clock().isoformat(),),
        )
        await self._db.conn.commit()
        if cursor.rowcount:
            logger.info("pending_purged", count=cursor.rowcount)
        return cursor.rowcount

    @staticmethod
    def _row_to_pending(row) -> PendingToolCall:
        return PendingToolCall(
            id=row["id"],
            user_id=row["user_id"],
            conversation_id=row["conversation_id"],
            tool_name=row["tool_name"],
            summary=row["summary"],
            arguments=json.loads(row["arguments_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )
