"""Event schemas for the append-only diagnostics log."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from crmpilot.core.identifiers import RunId


class EventType(StrEnum):
    """All recognized event types."""

    RUN_STARTED = "RunStarted"
    RUN_FINISHED = "RunFinished"
    RUN_PAUSED = "RunPaused"
    STEP_STARTED = "StepStarted"
    STEP_FINISHED = "StepFinished"
    LM_CALL_STARTED = "LMCallStarted"
    LM_CALL_FINISHED = "LMCallFinished"
    PROVIDER_CALL_FAILED = "ProviderCallFailed"
    PROVIDER_CALL_SUCCEEDED = "ProviderCallSucceeded"
    TOOL_CALL_STARTED = "ToolCallStarted"
    TOOL_CALL_FINISHED = "ToolCallFinished"
    APPROVAL_REQUESTED = "ApprovalRequested"
    APPROVAL_RESOLVED = "ApprovalResolved"
    QUOTA_DENIED = "QuotaDenied"


def _utc_now() -> datetime:
    return datetime.now(UTC)


class BaseEvent(BaseModel):
    """Base schema for all events in the event log."""

    run_id: RunId
    seq: int = Field(ge=0, description="Sequence number within the run")
    timestamp: datetime = Field(default_factory=_utc_now)
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)


class RunStarted(BaseEvent):
    """Emitted when a run begins or resumes."""

    event_type: EventType = EventType.RUN_STARTED


class RunFinished(BaseEvent):
    """Emitted when a run reaches a terminal finish reason."""

    event_type: EventType = EventType.RUN_FINISHED


class RunPaused(BaseEvent):
    """Emitted when a run suspends waiting for approvals."""

    event_type: EventType = EventType.RUN_PAUSED


class StepStarted(BaseEvent):
    event_type: EventType = EventType.STEP_STARTED


class StepFinished(BaseEvent):
    event_type: EventType = EventType.STEP_FINISHED


class LMCallStarted(BaseEvent):
    event_type: EventType = EventType.LM_CALL_STARTED


class LMCallFinished(BaseEvent):
    event_type: EventType = EventType.LM_CALL_FINISHED


class ProviderCallFailed(BaseEvent):
    """Emitted for each provider that raised during a fallback execution."""

    event_type: EventType = EventType.PROVIDER_CALL_FAILED


class ProviderCallSucceeded(BaseEvent):
    """Emitted for the single provider that served a fallback execution."""

    event_type: EventType = EventType.PROVIDER_CALL_SUCCEEDED


class ToolCallStarted(BaseEvent):
    """Emitted when a tool executor is about to run."""

    event_type: EventType = EventType.TOOL_CALL_STARTED


class ToolCallFinished(BaseEvent):
    """Emitted when a tool invocation resolves (success or structured failure)."""

    event_type: EventType = EventType.TOOL_CALL_FINISHED


class ApprovalRequested(BaseEvent):
    event_type: EventType = EventType.APPROVAL_REQUESTED


class ApprovalResolved(BaseEvent):
    event_type: EventType = EventType.APPROVAL_RESOLVED


class QuotaDenied(BaseEvent):
    event_type: EventType = EventType.QUOTA_DENIED
