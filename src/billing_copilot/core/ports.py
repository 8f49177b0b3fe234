"""Collaborator interfaces consumed by the turn orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from billing_copilot.core.types import AuditStatus, MessageRole
from billing_copilot.storage.models import Conversation, Message, PendingToolCall, UsageSummary


class ConversationStore(Protocol):
    async def ensure_conversation(self, user_id: str, conversation_id: Optional[str] = None) -> Conversation: ...

    async def load_messages(self, user_id: str, conversation_id: str) -> list[Message]: ...

    async def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: list[dict[str, Any]],
        tool_name: Optional[str] = None,
        tool_call_id: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message | None: ...

    async def touch_conversation_title(self, user_id: str, conversation_id: str, candidate: str) -> None: ...

    async def recent_tool_messages(
        self, user_id: str, conversation_id: str, tool_name: str, limit: int
    ) -> list[Message]: ...


class UsageStore(Protocol):
    async def get_usage(self, user_id: str) -> UsageSummary: ...

    async def increment(
        self, user_id: str, message_count: int = 0, tool_invocations: int = 0, tokens: int = 0
    ) -> None: ...


class PendingStore(Protocol):
    async def create(
        self, user_id: str, conversation_id: str, tool_name: str, summary: str, arguments: dict[str, Any]
    ) -> PendingToolCall: ...

    async def get(self, user_id: str, pending_id: str) -> PendingToolCall | None: ...

    async def consume(
        self, user_id: str, pending_id: str, conversation_id: str | None = None
    ) -> PendingToolCall | None: ...

    async def get_active(self, user_id: str, conversation_id: str) -> PendingToolCall | None: ...


class AuditSink(Protocol):
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
    ) -> None: ...


@dataclass
class ScopeDecision:
    allowed: bool
    metadata: dict[str, Any] = field(default_factory=dict)


class ScopeEvaluator(Protocol):
    def evaluate(self, history: list[Message], text: str, context: Optional[dict[str, Any]]) -> ScopeDecision: ...
