"""Convert stored conversation history to model messages, and tidy model text."""

from __future__ import annotations

import json
import re

from billing_copilot.ai.client import LLMMessage
from billing_copilot.ai.tools.base import ToolResult
from billing_copilot.core.types import MessageRole
from billing_copilot.storage.models import Message

EMPTY_ANSWER_FALLBACK = "Je n'ai pas pu générer de réponse."

_CODE_FENCE = re.compile(r"```[\w-]*\n?([\s\S]*?)```")
_LATEX_PATTERNS = (
    re.compile(r"\$\$([\s\S]*?)\$\$"),
    re.compile(r"\\\[([\s\S]*?)\\\]"),
    re.compile(r"\\\(([\s\S]*?)\\\)"),
    re.compile(r"\$([^\n$]+)\$"),
)
_BULLET = re.compile(r"^([-*]|•)\s*")
_NUMBERED = re.compile(r"^(\d+)[.)]\s*")
_SENTENCE_END = re.compile(r"(?<=[.?!])")


def build_model_messages(system_prompt: str, history: list[Message]) -> list[LLMMessage]:
    """Convert stored messages into the provider-neutral message list.

    Stored tool messages are replayed as assistant text prefixed with the tool
    name; the provider-level tool call ids of earlier turns are not kept.
    """
    messages = [LLMMessage(role="system", content=system_prompt)]
    for message in history:
        text = message.text
        if not text:
            continue
        if message.role == MessageRole.TOOL:
            content = f"Outil {message.tool_name}: {text}" if message.tool_name else text
            messages.append(LLMMessage(role="assistant", content=content))
        else:
            messages.append(LLMMessage(role=message.role.value, content=text))
    return messages


def format_tool_message_text(result: ToolResult) -> str:
    """Stored text of a tool message: summary, then the result data as JSON."""
    parts: list[str] = []
    if result.summary and result.summary.strip():
        parts.append(result.summary.strip())
    if result.data:
        try:
            parts.append(json.dumps(result.data, ensure_ascii=False, default=str))
        except (TypeError, ValueError):
            pass
    return " | ".join(parts)


def tool_context_payload(result: ToolResult) -> str:
    return json.dumps({"summary": result.summary, "data": result.data}, ensure_ascii=False, default=str)


def tool_error_payload(message: str) -> str:
    return json.dumps({"error": True, "message": message}, ensure_ascii=False)


def _normalize_line(line: str) -> str:
    trimmed = line.strip(" \t")
    bullet = _BULLET.match(trimmed)
    if bullet:
        content = trimmed[bullet.end():].strip()
        return f"- {content}" if content else "-"
    numbered = _NUMBERED.match(trimmed)
    if numbered:
        content = trimmed[numbered.end():].strip()
        return f"{numbered.group(1)}. {content}" if content else f"{numbered.group(1)}."
    return re.sub(r"[ \t]{2,}", " ", trimmed)


def normalize_assistant_text(raw: str) -> str:
    """Plain-Markdown rendering of a model answer.

    Code fences keep their content, LaTeX delimiters are dropped, bullets
    become ``- `` and numbered items ``1.``. Blank-line runs are collapsed.
    """
    text = _CODE_FENCE.sub(lambda match: (match.group(1) or "").strip(), raw)
    for pattern in _LATEX_PATTERNS:
        text = pattern.sub(r"\1", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\u00a0", " ")
    text = "\n".join(_normalize_line(line) for line in text.split("\n"))
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"\n +", "\n", text)
    return text.strip()


def split_tokens(text: str) -> list[str]:
    """Chunks streamed to the caller, split after sentence punctuation."""
    return [chunk for chunk in _SENTENCE_END.split(text) if chunk]


def user_texts_newest_first(history: list[Message]) -> tuple[str, ...]:
    return tuple(
        message.text.strip()
        for message in reversed(history)
        if message.role == MessageRole.USER and message.text.strip()
    )
