"""Turn orchestrator: receives a user message or confirmation, drives the tool loop."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from billing_copilot.ai.client import LLMMessage, ModelClient
from billing_copilot.ai.continuation import build_resume_hint
from billing_copilot.ai.conversation import build_model_messages, user_texts_newest_first
from billing_copilot.ai.events import EventSink, TurnEmitter, TurnOutcome
from billing_copilot.ai.scope import OUT_OF_SCOPE_RESPONSE
from billing_copilot.ai.tool_runner import OutcomeKind, ToolLoop, TurnServices
from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.config import AssistantConfig
from billing_copilot.core.ports import AuditSink, ConversationStore, PendingStore, ScopeEvaluator, UsageStore
from billing_copilot.core.session import ConversationLocks
from billing_copilot.core.types import MessageRole
from billing_copilot.errors import (
    CopilotError,
    EmptyMessageError,
    PendingActionNotFound,
    UnknownToolError,
    UsageLimitError,
)
from billing_copilot.log import get_logger, turn_context
from billing_copilot.storage.models import PendingToolCall, text_block

logger = get_logger(__name__)

UNEXPECTED_TURN_ERROR = "Une erreur inattendue est survenue."


@dataclass
class TurnRequest:
    """One call into the orchestrator.

    Exactly one of ``message`` and ``tool_confirmation_id`` is normally set;
    a confirmation id takes precedence when both are present.
    """

    user_id: str
    conversation_id: Optional[str] = None
    message: Optional[str] = None
    tool_confirmation_id: Optional[str] = None
    client_timezone: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    cancel_event: Optional[asyncio.Event] = None


def resolve_timezone(candidate: Optional[str], default: str) -> str:
    """Return ``candidate`` when it names a known IANA zone, else ``default``."""
    if not candidate or not candidate.strip():
        return default
    try:
        ZoneInfo(candidate.strip())
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("invalid_client_timezone", timezone=candidate)
        return default
    return candidate.strip()


class TurnOrchestrator:
    """Handles the full flow: request -> usage -> scope -> history -> model -> tools -> answer."""

    def __init__(
        self,
        conversations: ConversationStore,
        usage: UsageStore,
        pending: PendingStore,
        audit: AuditSink,
        registry: ToolRegistry,
        model_client: ModelClient,
        scope: ScopeEvaluator,
        settings: AssistantConfig,
        locks: ConversationLocks | None = None,
    ):
        self._conversations = conversations
        self._usage = usage
        self._pending = pending
        self._scope = scope
        self._settings = settings
        self._locks = locks or ConversationLocks()
        self._services = TurnServices(
            model_client=model_client,
            registry=registry,
            conversations=conversations,
            usage=usage,
            pending=pending,
            audit=audit,
            system_prompt=settings.system_prompt,
            max_tool_iterations=settings.max_tool_iterations,
            dedup_window=settings.dedup_window,
        )

    async def active_confirmation(self, user_id: str, conversation_id: str) -> PendingToolCall | None:
        """The newest unexpired confirmation waiting in a conversation, if any."""
        return await self._pending.get_active(user_id, conversation_id)

    async def run_turn(self, request: TurnRequest, emit: EventSink) -> TurnOutcome:
        """Process one turn and deliver its events to ``emit``.

        Every turn ends with exactly one terminal event; the returned outcome
        names which one.
        """
        emitter = TurnEmitter(emit)
        timezone = resolve_timezone(request.client_timezone, self._settings.default_timezone)

        try:
            conversation_id = await self._target_conversation_id(request)
            conversation = await self._conversations.ensure_conversation(request.user_id, conversation_id)
        except Exception as exc:
            logger.error("conversation_resolve_failed", error=str(exc), exc_info=True)
            emitter.error(UNEXPECTED_TURN_ERROR)
            return TurnOutcome.FAILED

        emitter.conversation_id = conversation.id
        with turn_context(user_id=request.user_id, conversation_id=conversation.id):
            async with self._locks.hold(conversation.id):
                loop = ToolLoop(
                    services=self._services,
                    emitter=emitter,
                    user_id=request.user_id,
                    conversation_id=conversation.id,
                    timezone=timezone,
                    cancel_event=request.cancel_event,
                )
                try:
                    await self._run_locked(request, loop)
                except CopilotError as exc:
                    logger.info("turn_failed", error_type=type(exc).__name__, error=str(exc))
                    if not emitter.terminated:
                        emitter.error(str(exc))
                except Exception as exc:
                    logger.error("turn_crashed", error=str(exc), exc_info=True)
                    if not emitter.terminated:
                        emitter.error(UNEXPECTED_TURN_ERROR)

        if not emitter.terminated:
            logger.error("turn_without_terminal_event")
            emitter.error(UNEXPECTED_TURN_ERROR)
        logger.info("turn_finished", outcome=emitter.outcome.value)
        return emitter.outcome

    async def _target_conversation_id(self, request: TurnRequest) -> Optional[str]:
        """A confirmation without a conversation id resumes the conversation it was issued in."""
        if request.conversation_id or not request.tool_confirmation_id:
            return request.conversation_id
        pending = await self._pending.get(request.user_id, request.tool_confirmation_id)
        return pending.conversation_id if pending is not None else None

    async def _run_locked(
self, request: TurnRequest, loop: ToolLoop) -> None:
        usage = await self._usage.get_usage(request.user_id)
        loop.emitter.usage(usage)
        if usage.locked:
            raise UsageLimitError()

        if request.tool_confirmation_id:
            await self._resume_confirmation(request.tool_confirmation_id, loop)
            return

        text = (request.message or "").strip()
        if not text:
            raise EmptyMessageError()

        history = await self._conversations.load_messages(request.user_id, loop.conversation_id)
        decision = self._scope.evaluate(history, text, request.context)
        await self._conversations.append_message(
            request.user_id,
            loop.conversation_id,
            MessageRole.USER,
            [text_block(text)],
            metadata=decision.metadata,
        )
        await self._conversations.touch_conversation_title(request.user_id, loop.conversation_id, text)
        await self._usage.increment(request.user_id, message_count=1)

        if not decision.allowed:
            logger.info("message_out_of_scope")
            await loop.deliver_answer(OUT_OF_SCOPE_RESPONSE)
            return

        history = await self._conversations.load_messages(request.user_id, loop.conversation_id)
        loop.user_messages = user_texts_newest_first(history)
        messages = build_model_messages(self._services.system_prompt, history)
        await loop.run(messages)

    async def _resume_confirmation(self, pending_id: str, loop: ToolLoop) -> None:
        """Execute a confirmed call once, then let the model carry on the workflow."""
        pending = await self._pending.consume(loop.user_id, pending_id, loop.conversation_id)
        if pending is None:
            logger.info("pending_not_found", pending_id=pending_id)
            raise PendingActionNotFound()

        tool = self._services.registry.get(pending.tool_name)
        if tool is None:
            raise UnknownToolError(pending.tool_name)

        logger.info("pending_consumed", pending_id=pending.id, tool=tool.name)
        loop.check_cancelled()
        outcome = await loop.execute_confirmed(tool, pending)
        if outcome.terminal:
            await loop.deliver_completion_summary()
            return
        if outcome.kind == OutcomeKind.FAILED:
            logger.info("confirmed_call_failed", tool=tool.name, error_kind=outcome.error_kind)

        history = await self._conversations.load_messages(loop.user_id, loop.conversation_id)
        loop.user_messages = user_texts_newest_first(history)
        messages = build_model_messages(self._services.system_prompt, history)
        hint = build_resume_hint(history)
        if hint:
            messages.append(LLMMessage(role="user", content=hint))
        await loop.run(messages)
