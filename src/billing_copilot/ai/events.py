"""Events delivered to the caller while a turn runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Optional

from billing_copilot.storage.models import Message, PendingToolCall, UsageSummary


class EventType(StrEnum):
    USAGE = "usage"
    CONFIRMATION_REQUIRED = "confirmation_required"
    TOOL_RESULT = "tool_result"
    ACTION_CARD = "action_card"
    MESSAGE_TOKEN = "message_token"
    MESSAGE_COMPLETE = "message_complete"
    ERROR = "error"


class TurnOutcome(StrEnum):
    COMPLETED = "completed"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    FAILED = "failed"


@dataclass(frozen=True)
class AssistantEvent:
    type: EventType
    conversation_id: Optional[str]
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "conversation_id": self.conversation_id, **self.data}


EventSink = Callable[[AssistantEvent], None]


class TurnEmitter:
    """Ordered, synchronous event sink for one turn.

    A turn ends with exactly one terminal event: ``message_complete``,
    ``confirmation_required`` or a fatal ``error``. Emitting anything after
    the terminal event is a bug and raises ``RuntimeError``.

    A failed tool call is reported as ``tool_result`` with ``failed=True``
    and never as ``error``. The loop carries on and ``error`` stays terminal.
    """

    def __init__(self, sink: EventSink, conversation_id: Optional[str] = None):
        self._sink = sink
        self.conversation_id = conversation_id
        self.outcome: TurnOutcome | None = None

    @property
    def terminated(self) -> bool:
        return self.outcome is not None

    def _emit(self, event_type: EventType, **data: Any) -> None:
        if self.terminated:
            raise RuntimeError(f"Cannot emit {event_type} after the turn ended ({self.outcome})")
        self._sink(AssistantEvent(type=event_type, conversation_id=self.conversation_id, data=data))

    def usage(self, summary: UsageSummary) -> None:
        self._emit(EventType.USAGE, usage=summary.to_dict())

    def tool_result(self, tool_name: str, result: Any, failed: bool = False) -> None:
        """Outcome of one tool call. Failed calls do not end the turn."""
        self._emit(EventType.TOOL_RESULT, tool_name=tool_name, result=result, failed=failed)

    def action_card(self, card: dict[str, Any]) -> None:
        self._emit(EventType.ACTION_CARD, card=card)

    def token(self, delta: str) -> None:
        self._emit(EventType.MESSAGE_TOKEN, delta=delta)

    def error(self, message: str) -> None:
        self._emit(EventType.ERROR, message=message)
        self.outcome = TurnOutcome.FAILED

    def confirmation_required(self, pending: PendingToolCall) -> None:
        self._emit(EventType.CONFIRMATION_REQUIRED, confirmation=pending.to_dict())
        self.outcome = TurnOutcome.AWAITING_CONFIRMATION

    def message_complete(self, message: Message) -> None:
        self._emit(
            EventType.MESSAGE_COMPLETE,
            message={
                "id": message.id,
                "role": message.role.value,
                "content": message.content,
                "created_at": message.created_at.isoformat(),
            },
        )
        self.outcome = TurnOutcome.COMPLETED


class EventCollector:
    """Sink that keeps every event, used by the CLI and tests."""

    def __init__(self) -> None:
        self.events: list[AssistantEvent] = []

    def __call__(self, event: AssistantEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[AssistantEvent]:
        return [event for event in self.events if event.type == event_type]

    @property
    def types(self) -> list[EventType]:
        return [event.type for event in self.events]
