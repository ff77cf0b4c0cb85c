"""Conversation message schemas handed to the agent by the caller."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(StrEnum):
    """Roles accepted in a conversation history."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ToolInvocationRecord(BaseModel):
    """A tool invocation as recorded in prior conversation history."""

    model_config = ConfigDict(extra="ignore")

    tool_name: str
    state: str = ""
    result: Any = None
    error: str | None = None


class ConversationMessage(BaseModel):
    """One normalized entry of a conversation history."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    tool_invocations: tuple[ToolInvocationRecord, ...] = Field(default=())
