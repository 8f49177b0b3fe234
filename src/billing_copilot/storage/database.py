"""SQLite database connection manager with schema migration."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from billing_copilot.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS conversations (
    id                TEXT PRIMARY KEY,
    user_id           TEXT NOT NULL,
    title             TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'ACTIVE' CHECK(status IN ('ACTIVE','ARCHIVED')),
    created_at        TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    last_activity_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_conversations_user
    ON conversations(user_id, last_activity_at);

CREATE TABLE IF NOT EXISTS messages (
    seq              INTEGER PRIMARY KEY AUTOINCREMENT,
    id               TEXT    NOT NULL UNIQUE,
    conversation_id  TEXT    NOT NULL REFERENCES conversations(id),
    user_id          TEXT    NOT NULL,
    role             TEXT    NOT NULL CHECK(role IN ('system','user','assistant','tool')),
    content_json     TEXT    NOT NULL,
    tool_name        TEXT,
    tool_call_id     TEXT,
    metadata_json    TEXT,
    created_at       TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(user_id, conversation_id, created_at);

CREATE INDEX IF NOT EXISTS idx_messages_tool
    ON messages(user_id, conversation_id, role, tool_name);

CREATE TABLE IF NOT EXISTS pending_tool_calls (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    conversation_id  TEXT NOT NULL,
    tool_name        TEXT NOT NULL,
    summary          TEXT NOT NULL,
    arguments_json   TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    expires_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pending_conversation
    ON pending_tool_calls(user_id, conversation_id, created_at);

CREATE TABLE IF NOT EXISTS usage_stats (
    user_id                TEXT    NOT NULL,
    period_key             TEXT    NOT NULL,
    message_count          INTEGER NOT NULL DEFAULT 0,
    tool_invocation_count  INTEGER NOT NULL DEFAULT 0,
    token_count            INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (user_id, period_key)
);

CREATE TABLE IF NOT EXISTS audit_log (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id          TEXT NOT NULL,
    conversation_id  TEXT,
    tool_name        TEXT NOT NULL,
    action_label     TEXT NOT NULL,
    payload_json     TEXT,
    result_json      TEXT,
    status           TEXT NOT NULL CHECK(status IN ('SUCCESS','ERROR')),
    error_message    TEXT,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS clients (
    id            TEXT PRIMARY KEY,
    user_id       TEXT NOT NULL,
    display_name  TEXT NOT NULL,
    company_name  TEXT,
    email         TEXT,
    phone         TEXT,
    vat_number    TEXT,
    address       TEXT,
    notes         TEXT,
    is_active     INTEGER NOT NULL DEFAULT 1,
    source        TEXT NOT NULL DEFAULT 'MANUAL',
    created_at    TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS products (
    id                   TEXT PRIMARY KEY,
    user_id              TEXT NOT NULL,
    sku                  TEXT NOT NULL,
    name                 TEXT NOT NULL,
    description          TEXT,
    unit                 TEXT NOT NULL DEFAULT '',
    price_ht_cents       INTEGER NOT NULL,
    vat_rate             REAL NOT NULL,
    currency             TEXT NOT NULL,
    is_active            INTEGER NOT NULL DEFAULT 1,
    created_at           TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    UNIQUE (user_id, sku)
);

CREATE TABLE IF NOT EXISTS documents (
    id               TEXT PRIMARY KEY,
    user_id          TEXT NOT NULL,
    kind             TEXT NOT NULL CHECK(kind IN ('quote','invoice')),
    number           TEXT NOT NULL,
    client_id        TEXT NOT NULL REFERENCES clients(id),
    status           TEXT NOT NULL,
    currency         TEXT NOT NULL,
    total_ht_cents   INTEGER NOT NULL,
    total_ttc_cents  INTEGER NOT NULL,
    lines_json       TEXT NOT NULL,
    created_at       TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    UNIQUE (user_id, number)
);
"""


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
