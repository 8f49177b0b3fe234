"""Iterative tool execution loop for model tool-use responses."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Optional

from billing_copilot.ai.client import LLMMessage, ModelClient, ToolCall
from billing_copilot.ai.continuation import build_completion_summary, build_workflow_hint
from billing_copilot.ai.conversation import (
    EMPTY_ANSWER_FALLBACK,
    format_tool_message_text,
    normalize_assistant_text,
    split_tokens,
    tool_context_payload,
    tool_error_payload,
)
from billing_copilot.ai.dedup import find_reusable_result, hash_arguments
from billing_copilot.ai.events import TurnEmitter
from billing_copilot.ai.tools.base import NormalizationContext, Tool, ToolContext, ToolResult
from billing_copilot.ai.tools.registry import ToolRegistry
from billing_copilot.core.ports import AuditSink, ConversationStore, PendingStore, UsageStore
from billing_copilot.core.types import AuditStatus, MessageRole
from billing_copilot.errors import DomainError, IterationBoundExceeded, ToolValidationError, TurnCancelled
from billing_copilot.log import get_logger
from billing_copilot.storage.models import Message, PendingToolCall, text_block

logger = get_logger(__name__)

UNEXPECTED_TOOL_ERROR = "Une erreur inattendue est survenue."


class OutcomeKind(StrEnum):
    EXECUTED = "executed"
    REUSED = "reused"
    PENDING = "pending"
    FAILED = "failed"


class ErrorKind(StrEnum):
    VALIDATION = "validation"
    UNKNOWN_TOOL = "unknown_tool"
    DOMAIN = "domain"
    UNEXPECTED = "unexpected"


@dataclass
class ToolOutcome:
    """Result of one tool call, inspected by the loop to decide what comes next."""

    kind: OutcomeKind
    tool_name: str
    call_id: Optional[str] = None
    result: Optional[ToolResult] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None
    pending: Optional[PendingToolCall] = None
    completes_workflow: bool = False

    @property
    def terminal(self) -> bool:
        """A successful workflow-ending tool closes the turn."""
        return (
            self.kind in (OutcomeKind.EXECUTED, OutcomeKind.REUSED)
            and self.completes_workflow
            and self.result is not None
            and self.result.success
        )

    def context_message(self) -> Optional[LLMMessage]:
        """Tool message fed back to the model, or None for a pending call."""
        if self.kind == OutcomeKind.PENDING:
            return None
        if self.kind == OutcomeKind.FAILED:
            content = tool_error_payload(self.error_message or UNEXPECTED_TOOL_ERROR)
        else:
            content = tool_context_payload(self.result)
        return LLMMessage(role="tool", content=content, tool_call_id=self.call_id, name=self.tool_name)


@dataclass
class TurnServices:
    """Long-lived collaborators shared by every turn."""

    model_client: ModelClient
    registry: ToolRegistry
    conversations: ConversationStore
    usage: UsageStore
    pending: PendingStore
    audit: AuditSink
    system_prompt: str
    max_tool_iterations: int = 4
    dedup_window: int = 12


@dataclass
class ToolLoop:
    """State machine for one turn: model calls, tool calls and final delivery.

    One instance is created per turn and discarded when the turn ends.
    """

    services: TurnServices
    emitter: TurnEmitter
    user_id: str
    conversation_id: str
    timezone: str
    cancel_event: Optional[asyncio.Event] = None
    user_messages: tuple[str, ...] = field(default_factory=tuple)

    @property
    def tool_context(self) -> ToolContext:
        return ToolContext(user_id=self.user_id, conversation_id=self.conversation_id, timezone=self.timezone)

    def check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            logger.info("turn_cancelled")
            raise TurnCancelled()

    # ── model loop ───────────────────────────────────────────

    async def run(self, messages: list[LLMMessage]) -> None:
        """Call the model until it answers in text, asks for confirmation or ends the workflow.

        Raises :class:`IterationBoundExceeded` when every allowed model call
        still requested tools.
        """
        tool_defs = self.services.registry.serialize_all()
        limit = self.services.max_tool_iterations

        for round_index in range(limit):
            self.check_cancelled()
            response = await self.services.model_client.complete(messages, tool_defs)
            logger.info(
                "model_response",
                round=round_index,
                provider=response.provider,
                tool_calls=[call.name for call in response.tool_calls],
            )

            if not response.tool_calls:
                await self.deliver_answer(response.text)
                await self.services.usage.increment(self.user_id, tokens=response.token_count or 0)
                return

            messages.append(LLMMessage(role="assistant", content=response.text, tool_calls=response.tool_calls))
            reused_any = False
            for call in response.tool_calls:
                self.check_cancelled()
                outcome = await self.execute_call(call)
                if outcome.kind == OutcomeKind.PENDING:
                    return
                if outcome.terminal:
                    await self.deliver_completion_summary()
                    return
                reused_any = reused_any or outcome.kind == OutcomeKind.REUSED
                context_message = outcome.context_message()
                if context_message is not None:
                    messages.append(context_message)

            if reused_any:
                history = await self.services.conversations.load_messages(self.user_id, self.conversation_id)
                hint = build_workflow_hint(history)
                if hint:
                    messages.append(LLMMessage(role="user", content=hint))

        logger.warning("tool_loop_exhausted", limit=limit)
        raise IterationBoundExceeded(limit)

    # ── single tool call ─────────────────────────────────────

    async def execute_call(self, call: ToolCall) -> ToolOutcome:
        """Validate, dedup, gate or execute one model tool call."""
        tool = self.services.registry.get(call.name)
        if tool is None:
            logger.warning("unknown_tool", tool=call.name)
            return await self._fail(call.name, call.id, ErrorKind.UNKNOWN_TOOL, f"Outil inconnu: {call.name}")

        try:
            arguments = tool.validate(call.arguments)
        except ToolValidationError as exc:
            await self._audit(tool, call.arguments, None, AuditStatus.ERROR, exc.describe())
            return await self._fail(tool.name, call.id, ErrorKind.VALIDATION, exc.describe())

        normalized = tool.normalize(arguments, NormalizationContext(user_messages=self.user_messages))
        digest = hash_arguments(normalized)

        if tool.deduplicate:
            candidates = await self.services.conversations.recent_tool_messages(
                self.user_id, self.conversation_id, tool.name, self.services.dedup_window
            )
            prior = find_reusable_result(candidates, digest, normalized)
            if prior is not None:
                return await self._reuse(tool, call.id, prior, arguments, normalized, digest)

        if tool.requires_confirmation:
            return await self._request_confirmation(tool, call.id, arguments, normalized)

        return await self._execute(tool, call.id, arguments, normalized, digest)

    async def execute_confirmed(self, tool: Tool, pending: PendingToolCall) -> ToolOutcome:
        """Run a consumed pending call. The handler runs exactly once."""
        normalized = tool.normalize(pending.arguments, NormalizationContext())
        digest = hash_arguments(normalized)
        return await self._execute(tool, pending.id, pending.arguments, normalized, digest)

    async def _execute(
        self,
        tool: Tool,
        call_id: Optional[str],
        arguments: dict[str, Any],
        normalized: dict[str, Any],
        digest: str,
    ) -> ToolOutcome:
        try:
            result = await tool.execute(normalized, self.tool_context)
        except DomainError as exc:
            await self._audit(tool, normalized, None, AuditStatus.ERROR, str(exc))
            return await self._fail(tool.name, call_id, ErrorKind.DOMAIN, str(exc))
        except Exception as exc:
            logger.error("tool_execution_error", tool=tool.name, error=str(exc), exc_info=True)
            await self._audit(tool, normalized, None, AuditStatus.ERROR, str(exc) or UNEXPECTED_TOOL_ERROR)
            return await self._fail(tool.name, call_id, ErrorKind.UNEXPECTED, UNEXPECTED_TOOL_ERROR)

        await self._audit(tool, normalized, result.data, AuditStatus.SUCCESS)
        logger.info("tool_executed", tool=tool.name, success=result.success)
        card = result.action_card.to_dict() if result.action_card else None
        self._emit_result(tool.name, result, card)

        content = [text_block(format_tool_message_text(result))]
        if card:
            content.append({"type": "action-card", "card": card})
        await self.services.conversations.append_message(
            self.user_id,
            self.conversation_id,
            MessageRole.TOOL,
            content,
            tool_name=tool.name,
            tool_call_id=call_id,
            metadata={
                "summary": result.summary,
                "data": result.data,
                "action_card": card,
                "arguments": arguments,
                "arguments_normalized": normalized,
                "arguments_hash": digest,
            },
        )
        await self.services.usage.increment(self.user_id, tool_invocations=1)
        return ToolOutcome(
            kind=OutcomeKind.EXECUTED,
            tool_name=tool.name,
            call_id=call_id,
            result=result,
            completes_workflow=tool.completes_workflow,
        )

    async def _reuse(
        self,
        tool: Tool,
        call_id: Optional[str],
        prior: Message,
        arguments: dict[str, Any],
        normalized: dict[str, Any],
        digest: str,
    ) -> ToolOutcome:
        metadata = prior.metadata or {}
        result = ToolResult(
            success=True,
            summary=metadata.get("summary") or f"Action {tool.name} déjà réalisée.",
            data=metadata.get("data"),
        )
        card = metadata.get("action_card")
        logger.info("tool_result_reused", tool=tool.name, prior_message_id=prior.id)
        self._emit_result(tool.name, result, card)
        await self.services.conversations.append_message(
            self.user_id,
            self.conversation_id,
            MessageRole.TOOL,
            [text_block(format_tool_message_text(result))],
            tool_name=tool.name,
            tool_call_id=call_id,
            metadata={
                "summary": result.summary,
                "data": result.data,
                "arguments": arguments,
                "arguments_normalized": normalized,
                "arguments_hash": digest,
                "reused": True,
            },
        )
        return ToolOutcome(
            kind=OutcomeKind.REUSED,
            tool_name=tool.name,
            call_id=call_id,
            result=result,
            completes_workflow=tool.completes_workflow,
        )

    async def _request_confirmation(
        self, tool: Tool, call_id: Optional[str], arguments: dict[str, Any], normalized: dict[str, Any]
    ) -> ToolOutcome:
        summary = tool.confirmation_summary(arguments)
        pending = await self.services.pending.create(
            self.user_id, self.conversation_id, tool.name, summary, normalized
        )
        await self.services.conversations.append_message(
            self.user_id,
            self.conversation_id,
            MessageRole.ASSISTANT,
            [text_block(f"{summary}. Confirmez avant exécution.")],
        )
        self.emitter.confirmation_required(pending)
        return ToolOutcome(kind=OutcomeKind.PENDING, tool_name=tool.name, call_id=call_id, pending=pending)

    async def _fail(self, tool_name: str, call_id: Optional[str], kind: ErrorKind, message: str) -> ToolOutcome:
        logger.info("tool_call_failed", tool=tool_name, error_kind=kind.value, error=message)
        self.emitter.tool_result(tool_name, {"error": True, "message": message}, failed=True)
        await self.services.conversations.append_message(
            self.user_id,
            self.conversation_id,
            MessageRole.TOOL,
            [text_block(tool_error_payload(message))],
            tool_name=tool_name,
            tool_call_id=call_id,
            metadata={"summary": message, "error": True, "error_kind": kind.value},
        )
        return ToolOutcome(
            kind=OutcomeKind.FAILED, tool_name=tool_name, call_id=call_id, error_kind=kind, error_message=message
        )

    def _emit_result(self, tool_name: str, result: ToolResult, card: Optional[dict[str, Any]]) -> None:
        self.emitter.tool_result(
            tool_name,
            {"success": result.success, "summary": result.summary, "data": result.data},
        )
        if card:
            self.emitter.action_card(card)

    async def _audit(
        self,
        tool: Tool,
        payload: Any,
        result: Any,
        status: AuditStatus,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            await self.services.audit.log_audit(
                tool_name=tool.name,
                action_label=tool.action_label or tool.name,
                user_id=self.user_id,
                conversation_id=self.conversation_id,
                payload=payload,
                result=result,
                status=status,
                error_message=error_message,
            )
        except Exception as exc:
            logger.error("audit_failed", tool=tool.name, error=str(exc))

    # ── delivery ─────────────────────────────────────────────

    async def deliver_answer(self, text: str) -> Message:
        """Normalize, stream, persist and complete the final assistant message."""
        normalized = normalize_assistant_text(text) or EMPTY_ANSWER_FALLBACK
        for chunk in split_tokens(normalized):
            self.emitter.token(chunk)
        saved = await self.services.conversations.append_message(
            self.user_id, self.conversation_id, MessageRole.ASSISTANT, [text_block(normalized)]
        )
        self.emitter.message_complete(saved)
        return saved

    async def deliver_completion_summary(self) -> Message:
        history = await self.services.conversations.load_messages(self.user_id, self.conversation_id)
        return await self.deliver_answer(build_completion_summary(history))
