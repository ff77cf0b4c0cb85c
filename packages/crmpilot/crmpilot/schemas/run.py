"""Run-state schemas — tool invocations, step records, approvals, results."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from crmpilot.core.identifiers import RunId, ToolInvocationId
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.messages import ConversationMessage


def _utc_now() -> datetime:
    return datetime.now(UTC)


class ToolInvocationState(StrEnum):
    """Lifecycle of a single model-emitted tool call."""

    PENDING_APPROVAL = "pending-approval"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolInvocationState.SUCCEEDED, ToolInvocationState.FAILED)


class FinishReason(StrEnum):
    """Why an agent run stopped."""

    STOP_CONDITION_REACHED = "stop-condition-reached"
    MODEL_DECLINED_FURTHER_TOOLS = "model-declined-further-tools"
    STEP_LIMIT_REACHED = "step-limit-reached"
    FATAL_ERROR = "fatal-error"
    PENDING_APPROVAL = "pending-approval"
    QUOTA_EXCEEDED = "quota-exceeded"
    CANCELLED = "cancelled"


class ApprovalDecision(StrEnum):
    """External decision on a pending tool invocation."""

    GRANTED = "granted"
    DENIED = "denied"


class Approval(BaseModel):
    """Caller-supplied decision for one pending invocation id."""

    invocation_id: ToolInvocationId
    decision: ApprovalDecision

    @property
    def granted(self) -> bool:
        return self.decision == ApprovalDecision.GRANTED


class ToolInvocation(BaseModel):
    """One model-emitted tool call and its outcome. Never reused across steps."""

    id: ToolInvocationId
    call_id: str = Field(description="Provider-assigned id used to thread the tool result")
    tool_name: str
    input: dict[str, Any] = Field(default_factory=dict)
    state: ToolInvocationState = ToolInvocationState.EXECUTING
    result: dict[str, Any] | None = None
    error: str | None = None
    violations: list[dict[str, Any]] = Field(default_factory=list)


class StepRecord(BaseModel):
    """Memory entry for one completed step."""

    step_number: int = Field(ge=1)
    model_text: str = ""
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)


class ProviderAttempt(BaseModel):
    """Diagnostics for one provider try inside a fallback execution."""

    provider: str
    success: bool
    error: str | None = None
    duration_seconds: float = 0.0


class AgentRunResult(BaseModel):
    """Terminal (or suspended) output of an agent run."""

    run_id: RunId
    text: str = ""
    steps: list[StepRecord] = Field(default_factory=list)
    finish_reason: FinishReason
    pending_invocations: list[ToolInvocation] = Field(default_factory=list)
    error: str | None = None
    provider_attempts: list[ProviderAttempt] = Field(default_factory=list)

    @property
    def pending_invocation_ids(self) -> list[ToolInvocationId]:
        return [inv.id for inv in self.pending_invocations]


class PausedRun(BaseModel):
    """Serialized state of a run suspended on approval.

    Holds everything needed to resume without re-running completed work:
    the sanitized history, the context, every finished step, and the
    partially resolved step that is waiting on approvals.
    """

    run_id: RunId
    call_context: CallContext
    history: list[ConversationMessage] = Field(default_factory=list)
    steps: list[StepRecord] = Field(default_factory=list)
    pending_step: StepRecord
    paused_at: datetime = Field(default_factory=_utc_now)

    @property
    def pending_invocation_ids(self) -> list[ToolInvocationId]:
        return [
            inv.id
            for inv in self.pending_step.tool_invocations
            if inv.state == ToolInvocationState.PENDING_APPROVAL
        ]
