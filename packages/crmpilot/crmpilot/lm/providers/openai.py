"""OpenAI provider — BYOK provider with native function calling."""

from __future__ import annotations

import json
import logging
from typing import Any

from crmpilot.lm.provider import BaseLMProvider, LMMessage, LMResponse, LMToolCall

logger = logging.getLogger(__name__)


class OpenAIProvider(BaseLMProvider):
    """LM provider backed by the OpenAI chat completions API (async client).

    Requires the ``openai`` package: ``pip install openai``.
    """

    def __init__(
        self,
        model: str = "gpt-4o",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int = 120,
        temperature: float = 0.3,
        max_tokens: int | None = None,
    ) -> None:
        try:
            import openai  # noqa: F401
        except ImportError as e:
            raise ImportError(
                "The 'openai' package is required for OpenAIProvider. "
                "Install it with: pip install openai"
            ) from e

        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = self._create_client()

    def _create_client(self) -> Any:
        import openai

        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return openai.AsyncOpenAI(**kwargs)

    @property
    def name(self) -> str:
        return f"openai-{self._model}"

    def get_model_name(self) -> str:
        return self._model

    @staticmethod
    def _to_api_messages(
        messages: list[LMMessage], instructions: str
    ) -> list[dict[str, Any]]:
        api_messages: list[dict[str, Any]] = []
        if instructions:
            api_messages.append({"role": "system", "content": instructions})
        for m in messages:
            if m.role == "tool":
                api_messages.append(
                    {"role": "tool", "tool_call_id": m.tool_call_id, "content": m.content}
                )
            elif m.role == "assistant" and m.tool_calls:
                api_messages.append({
                    "role": "assistant",
                    "content": m.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in m.tool_calls
                    ],
                })
            else:
                api_messages.append({"role": m.role, "content": m.content})
        return api_messages

    async def invoke(
        self,
        messages: list[LMMessage],
        *,
        instructions: str,
        tool_schemas: list[dict[str, Any]] | None = None,
    ) -> LMResponse:
        """Run one chat completion, exposing ``tool_schemas`` as functions."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._to_api_messages(messages, instructions),
            "temperature": self._temperature,
        }
        if self._max_tokens is not None:
            kwargs["max_tokens"] = self._max_tokens
        if tool_schemas:
            kwargs["tools"] = tool_schemas
            kwargs["tool_choice"] = "auto"

        response = await self._client.chat.completions.create(**kwargs)

        choice = response.choices[0]
        usage = response.usage

        tool_calls: list[LMToolCall] = []
        for call in choice.message.tool_calls or []:
            try:
                arguments = json.loads(call.function.arguments or "{}")
            except json.JSONDecodeError:
                logger.warning(
                    "Discarding malformed arguments for tool call '%s'", call.function.name
                )
                arguments = {}
            tool_calls.append(
                LMToolCall(id=call.id, name=call.function.name, arguments=arguments)
            )

        return LMResponse(
            text=choice.message.content or "",
            tool_calls=tool_calls,
            tokens_used=(usage.total_tokens if usage else 0),
            prompt_tokens=(usage.prompt_tokens if usage else 0),
            completion_tokens=(usage.completion_tokens if usage else 0),
        )
