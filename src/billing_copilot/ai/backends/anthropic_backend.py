"""Anthropic Messages API backend using the official SDK."""

from __future__ import annotations

from typing import Any

import anthropic

from billing_copilot.ai.client import LLMMessage, ModelClient, ModelResponse, ToolCall
from billing_copilot.config import AnthropicConfig
from billing_copilot.errors import ProviderError, is_transient_status
from billing_copilot.log import get_logger

logger = get_logger(__name__)


def build_messages(messages: list[LLMMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Convert neutral messages into Anthropic API messages format.

    Groups consecutive tool results into one user message of ``tool_result``
    blocks, and assistant tool calls into ``tool_use`` blocks.
    """
    system_parts: list[str] = []
    result: list[dict[str, Any]] = []
    i = 0

    while i < len(messages):
        message = messages[i]

        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
            i += 1

        elif message.role == "assistant" and message.tool_calls:
            content_blocks: list[dict[str, Any]] = []
            if message.content:
                content_blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                content_blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
            result.append({"role": "assistant", "content": content_blocks})
            i += 1

        elif message.role == "tool":
            # Collect consecutive tool results into one user message
            result_blocks: list[dict[str, Any]] = []
            while i < len(messages) and messages[i].role == "tool":
                result_blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": messages[i].tool_call_id or f"tool_{i}",
                        "content": messages[i].content,
                    }
                )
                i += 1
            result.append({"role": "user", "content": result_blocks})

        else:
            if message.content:
                result.append({"role": message.role, "content": message.content})
            i += 1

    return "\n\n".join(system_parts), result


class AnthropicClient(ModelClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig, client: anthropic.AsyncAnthropic | None = None):
        self._config = config
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    async def close(self) -> None:
        await self._client.close()

    async def complete(self, messages: list[LLMMessage], tools: list[dict[str, Any]]) -> ModelResponse:
        system, api_messages = build_messages(messages)
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens,
            "messages": api_messages,
            "temperature": self._config.temperature,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [
                {"name": tool["name"], "description": tool["description"], "input_schema": tool["parameters"]}
                for tool in tools
            ]

        logger.debug("api_request", provider=self.name, model=self._config.model, message_count=len(api_messages))
        try:
            response = await self._client.messages.create(**kwargs)
        except anthropic.APIStatusError as exc:
            raise ProviderError(
                f"Anthropic a renvoyé une erreur {exc.status_code}.",
                provider=self.name,
                transient=is_transient_status(exc.status_code),
                status_code=exc.status_code,
            ) from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderError("Anthropic est injoignable.", provider=self.name, transient=True) from exc
        except anthropic.AnthropicError as exc:
            raise ProviderError(str(exc), provider=self.name, transient=False) from exc

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                texts.append(block.text)
            elif block.type == "tool_use":
                arguments = block.input if isinstance(block.input, dict) else {}
                tool_calls.append(ToolCall(id=block.id, name=block.name, arguments=arguments))

        token_count = response.usage.input_tokens + response.usage.output_tokens
        logger.debug(
            "api_response",
            provider=self.name,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason,
        )
        return ModelResponse(text="\n".join(texts), tool_calls=tool_calls, token_count=token_count, provider=self.name)
