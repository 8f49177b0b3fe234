"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class MessageRole(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationStatus(StrEnum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class ProviderName(StrEnum):
    OPENAI = "openai"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"


class AuditStatus(StrEnum):
    SUCCESS = "SUCCESS"
    ERROR = "ERROR"


class DocumentKind(StrEnum):
    QUOTE = "quote"
    INVOICE = "invoice"
