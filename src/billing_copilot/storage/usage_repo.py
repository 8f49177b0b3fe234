"""Monthly usage counters per user."""

from __future__ import annotations

from datetime import datetime
from typing import Callable

from billing_copilot.storage.database import Database
from billing_copilot.storage.models import UsageSummary, utcnow

_MONTHS_FR = (
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
)


def period_key(moment: datetime) -> str:
    return f"{moment.year:04d}-{moment.month:02d}"


def period_label(moment: datetime) -> str:
    return f"{_MONTHS_FR[moment.month - 1]} {moment.year}"


class UsageRepository:
    """Counters keyed by (user, "YYYY-MM"); a new month starts from zero."""

    def __init__(self, db: Database, monthly_limit: int, clock: Callable[[], datetime] = utcnow):
        self._db = db
        self._limit = monthly_limit
        self._clock = clock

    async def get_usage(self, user_id: str) -> UsageSummary:
        now = self._clock()
        cursor = await self._db.conn.execute(
            "SELECT message_count FROM usage_stats WHERE user_id = ? AND period_key = ?",
            (user_id, period_key(now)),
        )
        row = await cursor.fetchone()
        used = row["message_count"] if row is not None else 0
        return UsageSummary(
            used=used,
            limit=self._limit,
            remaining=max(0, self._limit - used),
            period_label=period_label(now),
            locked=used >= self._limit,
        )

    async def increment(
        self,
        user_id: str,
        message_count: int = 0,
        tool_invocations: int = 0,
        tokens: int = 0,
    ) -> None:
        await self._db.conn.execute(
            """INSERT INTO usage_stats (user_id, period_key, message_count, tool_invocation_count, token_count)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(user_id, period_key) DO UPDATE SET
                   message_count = message_count + excluded.message_count,
                   tool_invocation_count = tool_invocation_count + excluded.tool_invocation_count,
                   token_count = token_count + excluded.token_count""",
            (user_id, period_key(self._clock()), message_count, tool_invocations, tokens),
        )
        await self._db.conn.commit()

    async def counters(self, user_id: str) -> dict[str, int]:
        """Raw counters of the current period."""
        cursor = await self._db.conn.execute(
            """SELECT message_count, tool_invocation_count, token_count
               FROM usage_stats WHERE user_id = ? AND period_key = ?""",
            (user_id, period_key(self._clock())),
        )
        row = await cursor.fetchone()
        if row is None:
            return {"message_count": 0, "tool_invocation_count": 0, "token_count": 0}
        return {key: row[key] for key in ("message_count", "tool_invocation_count", "token_count")}
