"""crmpilot schemas — Pydantic v2 models for context, messages, runs and events."""

from crmpilot.schemas.context import CallContext, StageRef
from crmpilot.schemas.events import BaseEvent, EventType
from crmpilot.schemas.messages import ConversationMessage, MessageRole, ToolInvocationRecord
from crmpilot.schemas.run import (
    AgentRunResult,
    Approval,
    ApprovalDecision,
    FinishReason,
    PausedRun,
    ProviderAttempt,
    StepRecord,
    ToolInvocation,
    ToolInvocationState,
)

__all__ = [
    "AgentRunResult",
    "Approval",
    "ApprovalDecision",
    "BaseEvent",
    "CallContext",
    "ConversationMessage",
    "EventType",
    "FinishReason",
    "MessageRole",
    "PausedRun",
    "ProviderAttempt",
    "StageRef",
    "StepRecord",
    "ToolInvocation",
    "ToolInvocationRecord",
    "ToolInvocationState",
]
