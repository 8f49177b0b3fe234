"""Gemini generateContent backend over plain HTTP."""

from __future__ import annotations

import json
import uuid
from typing import Any

import httpx

from billing_copilot.ai.client import LLMMessage, ModelClient, ModelResponse, ToolCall
from billing_copilot.config import GeminiConfig
from billing_copilot.errors import ProviderError, is_transient_status
from billing_copilot.log import get_logger

logger = get_logger(__name__)


def _parse_tool_content(content: str) -> Any:
    try:
        return json.loads(content)
    except (json.JSONDecodeError, TypeError):
        return {"content": content}


def build_contents(messages: list[LLMMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Split off the system instruction and translate the rest to Gemini contents.

    Tool results become ``functionResponse`` parts of a user turn; the call
    name is recovered from the assistant message that requested it.
    """
    system_parts: list[str] = []
    contents: list[dict[str, Any]] = []
    call_names: dict[str, str] = {}

    for message in messages:
        if message.role == "system":
            if message.content:
                system_parts.append(message.content)
        elif message.role == "assistant":
            parts: list[dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            for call in message.tool_calls:
                call_names[call.id] = call.name
                parts.append({"functionCall": {"name": call.name, "args": call.arguments}})
            if parts:
                contents.append({"role": "model", "parts": parts})
        elif message.role == "tool":
            name = message.name or call_names.get(message.tool_call_id or "", "tool")
            response = _parse_tool_content(message.content)
            if not isinstance(response, dict):
                response = {"result": response}
            contents.append({"role": "user", "parts": [{"functionResponse": {"name": name, "response": response}}]})
        elif message.content:
            contents.append({"role": "user", "parts": [{"text": message.content}]})

    return "\n\n".join(system_parts), contents


def _function_declaration(tool: dict[str, Any]) -> dict[str, Any]:
    return {"name": tool["name"], "description": tool["description"], "parameters": tool["parameters"]}


class GeminiClient(ModelClient):
    """Calls ``models/{model}:generateContent`` with function declarations."""

    def __init__(self, config: GeminiConfig, http: httpx.AsyncClient | None = None):
        self._config = config
        self._http = http or httpx.AsyncClient(timeout=None)

    @property
    def name(self) -> str:
        return "gemini"

    async def complete(self, messages: list[LLMMessage], tools: list[dict[str, Any]]) -> ModelResponse:
        system, contents = build_contents(messages)
        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"temperature": self._config.temperature},
        }
        if system:
            body["systemInstruction"] = {"parts": [{"text": system}]}
        if tools:
            body["tools"] = [{"functionDeclarations": [_function_declaration(tool) for tool in tools]}]

        url = f"{self._config.base_url.rstrip('/')}/models/{self._config.model}:generateContent"
        logger.debug("api_request", provider=self.name, model=self._config.model, message_count=len(contents))
        try:
            response = await self._http.post(url, params={"key": self._config.api_key}, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ProviderError(
                f"Gemini a renvoyé une erreur {status}.",
                provider=self.name,
                transient=is_transient_status(status),
                status_code=status,
            ) from exc
        except httpx.TransportError as exc:
            raise ProviderError("Gemini est injoignable.", provider=self.name, transient=True) from exc

        return self._parse(response.json())

    def _parse(self, payload: dict[str, Any]) -> ModelResponse:
        candidates = payload.get("candidates") or []
        if not candidates:
            raise ProviderError("Réponse Gemini vide.", provider=self.name, transient=False)
        parts = (candidates[0].get("content") or {}).get("parts") or []

        texts: list[str] = []
        tool_calls: list[ToolCall] = []
        for part in parts:
            if "text" in part:
                texts.append(part["text"])
            elif "functionCall" in part:
                call = part["functionCall"]
                name = call.get("name") or "tool"
                args = call.get("args")
                tool_calls.append(
                    ToolCall(
                        id=f"{name}-{uuid.uuid4().hex[:8]}",
                        name=name,
                        arguments=args if isinstance(args, dict) else {},
                    )
                )

        usage = payload.get("usageMetadata") or {}
        token_count = usage.get("totalTokenCount")
        logger.debug("api_response", provider=self.name, tool_calls=len(tool_calls), tokens=token_count)
        return ModelResponse(text="".join(texts), tool_calls=tool_calls, token_count=token_count, provider=self.name)

    async def close(self) -> None:
        await self._http.aclose()
