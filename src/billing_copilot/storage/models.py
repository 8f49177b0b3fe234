"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from billing_copilot.core.types import ConversationStatus, MessageRole

DEFAULT_CONVERSATION_TITLE = "Nouvelle conversation"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Conversation:
    id: str
    user_id: str
    title: str = DEFAULT_CONVERSATION_TITLE
    status: ConversationStatus = ConversationStatus.ACTIVE
    last_activity_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)


@dataclass
class Message:
    """One persisted conversation message.

    ``content`` is an ordered list of blocks, either ``{"type": "text",
    "text": ...}`` or ``{"type": "action-card", "card": {...}}``.
    """

    id: str
    conversation_id: str
    user_id: str
    role: MessageRole
    content: list[dict[str, Any]]
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def text(self) -> str:
        return content_to_text(self.content)


@dataclass
class PendingToolCall:
    id: str
    user_id: str
    conversation_id: str
    tool_name: str
    summary: str
    arguments: dict[str, Any]
    created_at: datetime = field(default_factory=utcnow)
    expires_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tool_name": self.tool_name,
            "summary": self.summary,
            "created_at": self.created_at.isoformat(),
            "arguments": self.arguments,
        }


@dataclass
class UsageSummary:
    used: int
    limit: int
    remaining: int
    period_label: str
    locked: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "used": self.used,
            "limit": self.limit,
            "remaining": self.remaining,
            "period_label": self.period_label,
            "locked": self.locked,
        }


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def content_to_text(blocks: list[dict[str, Any]]) -> str:
    """Flatten content blocks into the plain text shown to the model."""
    parts: list[str] = []
    for block in blocks:
        if block.get("type") == "text":
            parts.append(block.get("text", ""))
        elif block.get("type") == "action-card":
            card = block.get("card") or {}
            metadata = " | ".join(
                f"{entry.get('label')}: {entry.get('value')}" for entry in card.get("metadata") or []
            )
            parts.append(f"[Carte {card.get('type')}] {card.get('title', '')} {metadata}".rstrip())
    return "\n".join(part for part in parts if part)
