import asyncio
import json
from typing import Any, Dict, List, Optional

from billing_copilot.ai import schema as s
from billing_copilot.ai.client import LLMMessage, ModelClient, ModelResponse, ToolCall
from billing_copilot.ai.events import EventCollector, EventType
from billing_copilot.ai.tools.base import Tool, ToolContext, ToolResult
from billing_copilot.core.types import AuditStatus, MessageRole
from billing_copilot.storage.models import (
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    Message,
    PendingToolCall,
    UsageSummary,
)

USER_ID = "user-1"

TERMINAL_EVENTS = (EventType.MESSAGE_COMPLETE, EventType.CONFIRMATION_REQUIRED, EventType.ERROR)


def text_response(text: str, tokens: Optional[int] = None) -> ModelResponse:
    return ModelResponse(text=text, token_count=tokens, provider="fake")


def tool_response(*calls: tuple[str, Dict[str, Any]], text: str = "") -> ModelResponse:
    return ModelResponse(
        text=text,
        tool_calls=[ToolCall(id=f"call-{index}", name=name, arguments=args) for index, (name, args) in enumerate(calls, 1)],
        provider="fake",
    )


def terminal_events(collector: EventCollector) -> List[EventType]:
    return [event_type for event_type in collector.types if event_type in TERMINAL_EVENTS]


class FakeModelClient(ModelClient):
    """Replays scripted responses; exceptions in the script are raised."""

    def __init__(self, responses: Optional[List[Any]] = None, name: str = "fake", delay_seconds: float = 0.0) -> None:
        self._responses = list(responses or [])
        self._name = name
        self.delay_seconds = delay_seconds
        self.calls: List[List[LLMMessage]] = []
        self.tools_seen: List[List[Dict[str, Any]]] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, messages: List[LLMMessage], tools: List[Dict[str, Any]]) -> ModelResponse:
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
        finally:
            self.active -= 1
        if not self._responses:
            return text_response("Terminé.")
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class RecordingTool(Tool):
    """Configurable tool that records every execution."""

    def __init__(
        self,
        name: str = "record_note",
        *,
        requires_confirmation: bool = False,
        completes_workflow: bool = False,
        deduplicate: bool = True,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        self._name = name
        self.requires_confirmation = requires_confirmation
        self.completes_workflow = completes_workflow
        self.deduplicate = deduplicate
        self._data = data
        self._error = error
        self.executions: List[Dict[str, Any]] = []
        self.contexts: List[ToolContext] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return f"Outil de test {self._name}"

    @property
    def argument_schema(self) -> s.ObjectNode:
        return s.obj(
            note=s.string("Note", min_length=1),
            amount=s.optional(s.number("Montant", minimum=0)),
        )

    async def execute(self, arguments: Dict[str, Any], context: ToolContext) -> ToolResult:
        self.executions.append(arguments)
        self.contexts.append(context)
        if self._error is not None:
            raise self._error
        return ToolResult(
            success=True,
            summary=f"Note {arguments['note']} enregistrée.",
            data=self._data if self._data is not None else {"note": arguments["note"]},
        )


class InMemoryConversationStore:
    def __init__(self) -> None:
        self.conversations: Dict[str, Conversation] = {}
        self.messages: List[Message] = []

    async def ensure_conversation(self, user_id: str, conversation_id: Optional[str] = None) -> Conversation:
        existing = self.conversations.get(conversation_id) if conversation_id else None
        if existing is not None and existing.user_id == user_id:
            return existing
        conversation = Conversation(id=f"conv-{len(self.conversations) + 1}", user_id=user_id)
        self.conversations[conversation.id] = conversation
        return conversation

    async def load_messages(self, user_id: str, conversation_id: str) -> List[Message]:
        return [
            message
            for message in self.messages
            if message.user_id == user_id and message.conversation_id == conversation_id
        ]

    async def append_message(
        self,
        user_id: str,
        conversation_id: str,
        role: MessageRole,
        content: List[Dict[str, Any]],
        tool_name: Optional[str] = None,
        tool_call_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Message]:
        if not content:
            return None
        message = Message(
            id=f"msg-{len(self.messages) + 1}",
            conversation_id=conversation_id,
            user_id=user_id,
            role=role,
            content=content,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            # Same round-trip as the SQLite store.
            metadata=json.loads(json.dumps(metadata, default=str)) if metadata is not None else None,
        )
        self.messages.append(message)
        return message

    async def touch_conversation_title(self, user_id: str, conversation_id: str, candidate: str) -> None:
        conversation = self.conversations.get(conversation_id)
        if conversation is not None and conversation.title == DEFAULT_CONVERSATION_TITLE and candidate.strip():
            conversation.title = candidate.strip()[:80]

    async def recent_tool_messages(
        self, user_id: str, conversation_id: str, tool_name: str, limit: int
    ) -> List[Message]:
        history = await self.load_messages(user_id, conversation_id)
        matches = [
            message
            for message in reversed(history)
            if message.role == MessageRole.TOOL and message.tool_name == tool_name and message.metadata is not None
        ]
        return matches[:limit]

    def of_role(self, role: MessageRole) -> List[Message]:
        return [message for message in self.messages if message.role == role]


class InMemoryUsageStore:
    def __init__(self, limit: int = 250, used: int = 0) -> None:
        self.limit = limit
        self.message_count = used
        self.tool_invocations = 0
        self.tokens = 0

    async def get_usage(self, user_id: str) -> UsageSummary:
        return UsageSummary(
            used=self.message_count,
            limit=self.limit,
            remaining=max(0, self.limit - self.message_count),
            period_label="octobre 2026",
            locked=self.message_count >= self.limit,
        )

    async def increment(
        self, user_id: str, message_count: int = 0, tool_invocations: int = 0, tokens: int = 0
    ) -> None:
        self.message_count += message_count
        self.tool_invocations += tool_invocations
        self.tokens += tokens


class InMemoryPendingStore:
    def __init__(self) -> None:
        self.records: Dict[str, PendingToolCall] = {}
        self.created = 0

    async def create(
        self, user_id: str, conversation_id: str, tool_name: str, summary: str, arguments: Dict[str, Any]
    ) -> PendingToolCall:
        self.created += 1
        pending = PendingToolCall(
            id=f"pending-{self.created}",
            user_id=user_id,
            conversation_id=conversation_id,
            tool_name=tool_name,
            summary=summary,
            arguments=json.loads(json.dumps(arguments, default=str)),
        )
        self.records[pending.id] = pending
        return pending

    async def get(self, user_id: str, pending_id: str) -> Optional[PendingToolCall]:
        pending = self.records.get(pending_id)
        return pending if pending is not None and pending.user_id == user_id else None

    async def consume(
        self, user_id: str, pending_id: str, conversation_id: Optional[str] = None
    ) -> Optional[PendingToolCall]:
        pending = await self.get(user_id, pending_id)
        if pending is None or conversation_id not in (None, pending.conversation_id):
            return None
        return self.records.pop(pending_id)

    async def get_active(self, user_id: str, conversation_id: str) -> Optional[PendingToolCall]:
        matches = [
            pending
            for pending in self.records.values()
            if pending.user_id == user_id and pending.conversation_id == conversation_id
        ]
        return matches[-1] if matches else None


class RecordingAuditSink:
    def __init__(self, fail: bool = False) -> None:
        self.entries: List[Dict[str, Any]] = []
        self.fail = fail

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
        if self.fail:
            raise RuntimeError("audit store offline")
        self.entries.append(
            {
                "tool_name": tool_name,
                "action_label": action_label,
                "payload": payload,
                "result": result,
                "status": status,
                "error_message": error_message,
            }
        )
