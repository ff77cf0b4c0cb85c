"""Anthropic provider — BYOK provider with native tool_use blocks."""

from __future__ import annotations

import logging
from typing import Any

from crmpilot.lm.provider import BaseLMProvider, LMMessage, LMResponse, LMToolCall

logger = logging.getLogger(__name__)


class AnthropicProvider(BaseLMProvider):
    """LM provider backed by the Anthropic messages API (async client).

    Requires the ``anthropic`` package: ``pip install anthropic``.
    """

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-latest",
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: int = 120,
        temperature: float = 0.3,
        max_tokens: int = 4096,
    ) -> None:
        try:
            import anthropic  # noqa: F401
        except ImportError as e:
            raise ImportError(
                "The 'anthropic' package is required for AnthropicProvider. "
                "Install it with: pip install anthropic"
            ) from e

        self._model = model
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._client = self._create_client()

    def _create_client(self) -> Any:
        import anthropic

        kwargs: dict[str, Any] = {"timeout": self._timeout}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._base_url:
            kwargs["base_url"] = self._base_url
        return anthropic.AsyncAnthropic(**kwargs)

    @property
    def name(self) -> str:
        return f"anthropic-{self._model}"

    def get_model_name(self) -> str:
        return self._model

    @staticmethod
    def _to_api_messages(messages: list[LMMessage]) -> list[dict[str, Any]]:
        """Convert neutral messages to Anthropic content blocks.

        Consecutive tool results are merged into one user turn, since the
        API requires all results for an assistant turn in a single message.
        """
        api_messages: list[dict[str, Any]] = []
        for m in messages:
            if m.role == "tool":
                block = {
                    "type": "tool_result",
                    "tool_use_id": m.tool_call_id,
                    "content": m.content,
                }
                last = api_messages[-1] if api_messages else None
                if (
                    last is not None
                    and last["role"] == "user"
                    and isinstance(last["content"], list)
                    and all(b.get("type") == "tool_result" for b in last["content"])
                ):
                    last["content"].append(block)
                else:
                    api_messages.append({"role": "user", "content": [block]})
            elif m.role == "assistant" and m.tool_calls:
                blocks: list[dict[str, Any]] = []
                if m.content:
                    blocks.append({"type": "text", "text": m.content})
                blocks.extend(
                    {"type": "tool_use", "id": c.id, "name": c.name, "input": c.arguments}
                    for c in m.tool_calls
                )
                api_messages.append({"role": "assistant", "content": blocks})
            elif m.role in ("user", "assistant"):
                api_messages.append({"role": m.role, "content": m.content})
        return api_messages

    @staticmethod
    def _convert_tool_schemas(
        openai_schemas: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        """Convert OpenAI-style tool schemas to Anthropic format.

        OpenAI format: {"type": "function", "function": {"name": ..., "parameters": ...}}
        Anthropic format: {"name": ..., "input_schema": ...}
        """
        anthropic_tools = []
        for tool in openai_schemas:
            if "function" in tool:
                func = tool["function"]
                anthropic_tools.append({
                    "name": func["name"],
                    "description": func.get("description", ""),
                    "input_schema": func.get("parameters", {"type": "object"}),
                })
            else:
                anthropic_tools.append(tool)
        return anthropic_tools

    async def invoke(
        self,
        messages: list[LMMessage],
        *,
        instructions: str,
        tool_schemas: list[dict[str, Any]] | None = None,
    ) -> LMResponse:
        """Run one messages call, exposing ``tool_schemas`` as tools."""
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": self._to_api_messages(messages),
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }
        if instructions:
            kwargs["system"] = instructions
        if tool_schemas:
            kwargs["tools"] = self._convert_tool_schemas(tool_schemas)

        response = await self._client.messages.create(**kwargs)

        text = ""
        tool_calls: list[LMToolCall] = []
        for block in response.content:
            if block.type == "text":
                text += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    LMToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))
                )

        return LMResponse(
            text=text,
            tool_calls=tool_calls,
            tokens_used=response.usage.input_tokens + response.usage.output_tokens,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )
