"""Audit trail of tool invocations."""

from __future__ import annotations

import json
from typing import Any, Optional

from billing_copilot.core.types import AuditStatus
from billing_copilot.storage.database import Database


def _to_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, ensure_ascii=False, default=str)


class AuditRepository:
    def __init__(self, db: Database):
        self._db = db

    async def log_audit(
        self,
        tool_name: str,
        action_label: str,
        user_id: str,
        conversation_id: Optional[str],
        payload: Any,
        result: Any,
        status: AuditStatus,
        error_message: Optional[str] = None,
    ) -> None:
        await self._db.conn.execute(
            """INSERT INTO audit_log
               (user_id, conversation_id, tool_name, action_label, payload_json,
                result_json, status, error_message)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                user_id,
                conversation_id,
                tool_name,
                action_label,
                _to_json(payload),
                _to_json(result),
                status.value,
                error_message,
            ),
        )
        await self._db.conn.commit()

    async def list_entries(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        cursor = await self._db.conn.execute(
            "SELECT * FROM audit_log WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        rows = await cursor.fetchall()
        return [
            {
                "tool_name": row["tool_name"],
                "action_label": row["action_label"],
                "status": row["status"],
                "error_message": row["error_message"],
                "payload": json.loads(row["payload_json"]) if row["payload_json"] else None,
                "result": json.loads(row["result_json"]) if row["result_json"] else None,
            }
            for row in rows
        ]
