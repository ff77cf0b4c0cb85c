"""LM provider — abstract interface for tool-calling language model backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class LMToolCall(BaseModel):
    """A tool call emitted by the model."""

    id: str = Field(description="Provider-assigned call id")
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class LMMessage(BaseModel):
    """A single message in an LM conversation.

    ``tool`` messages carry the result of one call and reference it through
    ``tool_call_id``; ``assistant`` messages may carry the calls themselves.
    """

    role: str = Field(description="Message role: user, assistant or tool")
    content: str = Field(default="", description="Message content")
    tool_calls: list[LMToolCall] = Field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None


class LMResponse(BaseModel):
    """Response from an LM provider."""

    text: str = Field(default="", description="Generated text")
    tool_calls: list[LMToolCall] = Field(default_factory=list)
    tokens_used: int = Field(ge=0, default=0, description="Total tokens consumed")
    prompt_tokens: int = Field(ge=0, default=0, description="Input prompt tokens")
    completion_tokens: int = Field(
        ge=0, default=0, description="Output completion tokens"
    )


class BaseLMProvider(ABC):
    """Abstract base class for language model providers.

    Concrete providers translate the neutral message list and the
    OpenAI-style tool schemas into their native API and back.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g., 'openai-gpt-4o', 'anthropic-claude')."""

    @abstractmethod
    async def invoke(
        self,
        messages: list[LMMessage],
        *,
        instructions: str,
        tool_schemas: list[dict[str, Any]] | None = None,
    ) -> LMResponse:
        """Generate a response (text and/or tool calls) for one step."""

    def get_model_name(self) -> str:
        """Return the underlying model identifier (e.g., 'gpt-4o')."""
        return self.name
