"""Provider-neutral model client with single-step fallback."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from billing_copilot.core.types import ProviderName
from billing_copilot.errors import CopilotError, ProviderError
from billing_copilot.log import get_logger

if TYPE_CHECKING:
    from billing_copilot.config import AppConfig

logger = get_logger(__name__)


@dataclass
class ToolCall:
    """A tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass
class LLMMessage:
    """One message of the provider-neutral conversation.

    Roles are ``system``, ``user``, ``assistant`` and ``tool``. Assistant
    messages may carry ``tool_calls``; tool messages answer one call through
    ``tool_call_id``.
    """

    role: str
    content: str = ""
    tool_call_id: Optional[str] = None
    name: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)


@dataclass
class ModelResponse:
    """Unified response from any model backend."""

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    token_count: Optional[int] = None
    provider: str = ""


class ModelClient(ABC):
    """Abstract base class for model backends."""

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def complete(self, messages: list[LLMMessage], tools: list[dict[str, Any]]) -> ModelResponse:
        """Send the conversation and tool definitions; return text and tool calls.

        Failures raise :class:`ProviderError` with ``transient`` set from the
        structured error (status code, connection failure, timeout).
        """
        ...

    async def close(self) -> None:
        """Release network resources held by the backend."""


class FallbackModelClient(ModelClient):
    """Primary client with one retry on a secondary after a transient failure.

    Non-transient errors propagate unchanged, and so does any error from the
    secondary. Each attempt runs under its own timeout.
    """

    def __init__(self, primary: ModelClient, secondary: ModelClient | None = None, timeout: float | None = None):
        self._primary = primary
        self._secondary = secondary
        self._timeout = timeout

    async def close(self) -> None:
        await self._primary.close()
        if self._secondary is not None:
            await self._secondary.close()

    @property
    def name(self) -> str:
        if self._secondary is None:
            return self._primary.name
        return f"{self._primary.name}+{self._secondary.name}"

    async def complete(self, messages: list[LLMMessage], tools: list[dict[str, Any]]) -> ModelResponse:
        try:
            return await self._attempt(self._primary, messages, tools)
        except ProviderError as exc:
            if not exc.transient or self._secondary is None:
                raise
            logger.warning(
                "provider_fallback",
                primary=self._primary.name,
                secondary=self._secondary.name,
                status_code=exc.status_code,
                error=str(exc),
            )
        return await self._attempt(self._secondary, messages, tools)

    async def _attempt(
        self, client: ModelClient, messages: list[LLMMessage], tools: list[dict[str, Any]]
    ) -> ModelResponse:
        try:
            async with asyncio.timeout(self._timeout):
                return await client.complete(messages, tools)
        except TimeoutError as exc:
            logger.error("provider_timeout", provider=client.name, timeout=self._timeout)
            raise ProviderError(
                f"{client.name} n'a pas répondu à temps.", provider=client.name, transient=True
            ) from exc


def _build_backend(provider: ProviderName, config: AppConfig) -> ModelClient:
    match provider:
        case ProviderName.GEMINI:
            from billing_copilot.ai.backends.gemini_backend import GeminiClient

            return GeminiClient(config.gemini)
        case ProviderName.ANTHROPIC:
            from billing_copilot.ai.backends.anthropic_backend import AnthropicClient

            return AnthropicClient(config.anthropic)
        case _:
            from billing_copilot.ai.backends.openai_backend import OpenAIClient

            return OpenAIClient(config.openai)


def create_model_client(config: AppConfig) -> ModelClient:
    """Build the configured primary backend, wrapped with its fallback."""
    assistant = config.assistant
    if not config.provider_configured(assistant.provider):
        raise CopilotError(f"Aucune clé API configurée pour le fournisseur {assistant.provider.value}.")

    primary = _build_backend(assistant.provider, config)
    secondary = None
    fallback = assistant.fallback_provider
    if fallback is not None and config.provider_configured(fallback):
        secondary = _build_backend(fallback, config)
    elif fallback is not None:
        logger.warning("fallback_provider_unconfigured", provider=fallback.value)

    logger.info(
        "model_client_created",
        provider=assistant.provider.value,
        fallback=secondary.name if secondary else None,
    )
    return FallbackModelClient(primary, secondary, timeout=assistant.provider_timeout_seconds)
