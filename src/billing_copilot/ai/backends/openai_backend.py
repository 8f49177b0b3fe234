"""OpenAI chat-completions backend."""

from __future__ import annotations

import json
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, OpenAIError

from billing_copilot.ai.client import LLMMessage, ModelClient, ModelResponse, ToolCall
from billing_copilot.config import OpenAIConfig
from billing_copilot.errors import ProviderError, is_transient_status
from billing_copilot.log import get_logger

logger = get_logger(__name__)


def _to_openai_message(message: LLMMessage) -> dict[str, Any]:
    if message.role == "tool":
        return {"role": "tool", "tool_call_id": message.tool_call_id, "content": message.content}
    payload: dict[str, Any] = {"role": message.role, "content": message.content}
    if message.role == "assistant" and message.tool_calls:
        payload["content"] = message.content or None
        payload["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.name,
                    "arguments": json.dumps(call.arguments, ensure_ascii=False),
                },
            }
            for call in message.tool_calls
        ]
    return payload


def _to_openai_tool(tool: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": tool["name"],
            "description": tool["description"],
            "parameters": tool["parameters"],
        },
    }


class OpenAIClient(ModelClient):
    """Chat completions with function tools through the official SDK."""

    def __init__(self, config: OpenAIConfig, client: AsyncOpenAI | None = None):
        self._config = config
        self._client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
        )

    @property
    def name(self) -> str:
        return "openai"

    async def close(self) -> None:
        await self._client.close()

    async def complete(self, messages: list[LLMMessage], tools: list[dict[str, Any]]) -> ModelResponse:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": [_to_openai_message(message) for message in messages],
            "temperature": self._config.temperature,
        }
        if tools:
            kwargs["tools"] = [_to_openai_tool(tool) for tool in tools]
            kwargs["tool_choice"] = "auto"

        logger.debug("api_request", provider=self.name, model=self._config.model, message_count=len(messages))
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except APIStatusError as exc:
            raise ProviderError(
                f"OpenAI a renvoyé une erreur {exc.status_code}.",
                provider=self.name,
                transient=is_transient_status(exc.status_code),
                status_code=exc.status_code,
            ) from exc
        except APIConnectionError as exc:
            # Also covers APITimeoutError.
            raise ProviderError("OpenAI est injoignable.", provider=self.name, transient=True) from exc
        except OpenAIError as exc:
            raise ProviderError(str(exc), provider=self.name, transient=False) from exc

        if not response.choices:
            raise ProviderError("Réponse OpenAI vide.", provider=self.name, transient=False)
        choice = response.choices[0].message
        tool_calls: list[ToolCall] = []
        for call in choice.tool_calls or []:
            if call.type != "function":
                continue
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning("tool_arguments_unparseable", provider=self.name, tool=call.function.name)
                continue
            tool_calls.append(
                ToolCall(id=call.id, name=call.function.name, arguments=arguments if isinstance(arguments, dict) else {})
            )

        token_count = response.usage.total_tokens if response.usage else None
        logger.debug("api_response", provider=self.name, tool_calls=len(tool_calls), tokens=token_count)
        return ModelResponse(text=choice.content or "", tool_calls=tool_calls, token_count=token_count, provider=self.name)
