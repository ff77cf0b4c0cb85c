"""AgentRunner — tool-calling step loop with approval gating and provider fallback."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from crmpilot.core.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    StepTimeoutError,
    TenantNotResolvedError,
    UnauthenticatedError,
)
from crmpilot.core.identifiers import (
    RunId,
    ToolInvocationId,
    generate_run_id,
    generate_tool_invocation_id,
)
from crmpilot.governance.quota import QuotaGuard
from crmpilot.lm.agent_config import AgentConfig
from crmpilot.lm.context_composer import compose_initial, compose_step_reminder
from crmpilot.lm.fallback import ProviderFallbackExecutor
from crmpilot.lm.provider import BaseLMProvider, LMMessage, LMResponse, LMToolCall
from crmpilot.lm.sanitizer import sanitize
from crmpilot.runtime.event_log import EventLog, SeqCounter
from crmpilot.runtime.run_store import InMemoryRunStore, RunStore
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.events import (
    ApprovalRequested,
    ApprovalResolved,
    BaseEvent,
    LMCallFinished,
    LMCallStarted,
    QuotaDenied,
    RunFinished,
    RunPaused,
    RunStarted,
    StepFinished,
    StepStarted,
    ToolCallFinished,
    ToolCallStarted,
)
from crmpilot.schemas.messages import ConversationMessage, MessageRole
from crmpilot.schemas.run import (
    AgentRunResult,
    Approval,
    ApprovalDecision,
    FinishReason,
    PausedRun,
    StepRecord,
    ToolInvocation,
    ToolInvocationState,
)
from crmpilot.tools.base import ToolErrorKind, ToolSuccess
from crmpilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)


@dataclass
class _RunState:
    """Mutable state of one run while the loop is active."""

    run_id: RunId
    context: CallContext
    history: list[ConversationMessage]
    steps: list[StepRecord] = field(default_factory=list)
    instructions: str = ""
    last_text: str = ""


def _normalize_approvals(
    approvals: Iterable[Approval | Mapping[str, Any]] | Mapping[str, Any] | None,
) -> dict[ToolInvocationId, ApprovalDecision]:
    """Accept Approval objects, dict records, or an ``{id: decision}`` mapping."""
    if not approvals:
        return {}

    if isinstance(approvals, Mapping):
        records: list[Any] = [
            {"invocation_id": key, "decision": value} for key, value in approvals.items()
        ]
    else:
        records = list(approvals)

    decisions: dict[ToolInvocationId, ApprovalDecision] = {}
    for record in records:
        if isinstance(record, Mapping):
            data = dict(record)
            if "invocation_id" not in data and "id" in data:
                data["invocation_id"] = data.pop("id")
            if "decision" not in data and "granted" in data:
                data["decision"] = data.pop("granted")
            if isinstance(data.get("decision"), bool):
                data["decision"] = (
                    ApprovalDecision.GRANTED if data["decision"] else ApprovalDecision.DENIED
                )
            try:
                record = Approval.model_validate(data)
            except ValidationError as exc:
                raise ConfigurationError(f"Invalid approval record: {exc}") from exc
        decisions[record.invocation_id] = record.decision
    return decisions


def _tool_message_content(invocation: ToolInvocation) -> str:
    if invocation.state == ToolInvocationState.SUCCEEDED:
        return json.dumps(invocation.result or {}, default=str)
    payload: dict[str, Any] = {"success": False, "error": invocation.error or "failed"}
    if invocation.violations:
        payload["violations"] = invocation.violations
    return json.dumps(payload, default=str)


def build_step_messages(
    history: Sequence[ConversationMessage], steps: Sequence[StepRecord]
) -> list[LMMessage]:
    """Conversation history followed by each step's calls and tool results."""
    messages = [
        LMMessage(role=m.role.value, content=m.content)
        for m in history
        if m.role != MessageRole.SYSTEM
    ]
    for step in steps:
        if not step.tool_invocations:
            if step.model_text:
                messages.append(LMMessage(role="assistant", content=step.model_text))
            continue
        messages.append(
            LMMessage(
                role="assistant",
                content=step.model_text,
                tool_calls=[
                    LMToolCall(id=inv.call_id, name=inv.tool_name, arguments=inv.input)
                    for inv in step.tool_invocations
                ],
            )
        )
        messages.extend(
            LMMessage(
                role="tool",
                content=_tool_message_content(inv),
                tool_call_id=inv.call_id,
                name=inv.tool_name,
            )
            for inv in step.tool_invocations
        )
    return messages


class AgentRunner:
    """Executes the compose → invoke → act loop for one CRM conversation.

    Each step composes instructions (initial context plus a memory
    reminder), invokes the model through the provider fallback executor,
    and passes every emitted tool call through the registry's approval
    gate. Tool failures are fed back to the model; only provider
    exhaustion and step timeouts end a run with ``fatal-error``. Calls to
    tools requiring approval suspend the run, which is stored in the
    RunStore and resumed by calling ``run`` again with approvals.
    """

    def __init__(
        self,
        providers: Sequence[BaseLMProvider],
        tool_registry: ToolRegistry,
        *,
        config: AgentConfig | None = None,
        event_log: EventLog | None = None,
        run_store: RunStore | None = None,
        quota_guard: QuotaGuard | None = None,
    ) -> None:
        if not providers:
            raise ConfigurationError("AgentRunner requires at least one LM provider")
        self._providers = list(providers)
        self._tool_registry = tool_registry
        self._config = config or AgentConfig()
        self._event_log = event_log
        self._run_store = run_store if run_store is not None else InMemoryRunStore()
        self._quota_guard = quota_guard

    @property
    def run_store(self) -> RunStore:
        return self._run_store

    # ── Public entry point ─────────────────────────────────────────

    async def run(
        self,
        history: Iterable[Any] | None,
        call_context: CallContext | Mapping[str, Any] | None,
        approvals: Iterable[Approval | Mapping[str, Any]] | Mapping[str, Any] | None = None,
        *,
        run_id: RunId | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AgentRunResult:
        """Run (or resume) the agent.

        Without approvals a new run starts from ``history``. With approvals
        the paused run identified by ``run_id`` (or by the approved
        invocation ids) resumes from its stored steps; ``history`` is then
        ignored. Raises UnauthenticatedError/TenantNotResolvedError for a
        missing identity and ConfigurationError for invalid input.
        """
        context = self._resolve_context(call_context)
        decisions = _normalize_approvals(approvals)

        if decisions:
            paused = self._load_paused(run_id, decisions)
            if paused.call_context.tenant_id != context.tenant_id:
                raise ConfigurationError(
                    f"Run {paused.run_id} belongs to a different tenant"
                )
            # Claim the snapshot before any await so one approval executes once.
            paused = self._run_store.take(paused.run_id)
            if paused is None:
                raise ConfigurationError("No paused run matches the supplied approvals")
            state = _RunState(
                run_id=paused.run_id,
                context=paused.call_context,
                history=list(paused.history),
                steps=list(paused.steps),
            )
        else:
            paused = None
            state = _RunState(
                run_id=run_id or generate_run_id(),
                context=context,
                history=sanitize(history),
            )

        state.instructions = self._initial_instructions(state)
        seq = SeqCounter(
            self._event_log.next_seq(state.run_id) if self._event_log is not None else 0
        )
        fallback = ProviderFallbackExecutor(self._event_log, state.run_id, seq)

        self._emit(
            RunStarted,
            state.run_id,
            seq,
            {
                "tenant_id": state.context.tenant_id,
                "history_length": len(state.history),
                "resumed": paused is not None,
            },
        )
        logger.info(
            "Agent run %s %s for tenant %s",
            state.run_id,
            "resuming" if paused else "starting",
            state.context.tenant_id,
        )

        if paused is not None:
            result = await self._resume_pending_step(state, paused, decisions, seq)
            if result is not None:
                return result
            if len(state.steps) >= self._config.max_steps:
                return self._finish(state, seq, fallback, FinishReason.STEP_LIMIT_REACHED)

        return await self._loop(state, seq, fallback, cancel_event)

    # ── Loop ───────────────────────────────────────────────────────

    async def _loop(
        self,
        state: _RunState,
        seq: SeqCounter,
        fallback: ProviderFallbackExecutor,
        cancel_event: asyncio.Event | None,
    ) -> AgentRunResult:
        tool_schemas = self._tool_registry.tool_schemas()

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return self._finish(state, seq, fallback, FinishReason.CANCELLED)

            step_number = len(state.steps) + 1

            if self._quota_guard is not None:
                decision = await self._quota_guard.check(state.context)
                if not decision.allowed:
                    self._emit(QuotaDenied, state.run_id, seq, {"reason": decision.reason})
                    return self._finish(
                        state, seq, fallback, FinishReason.QUOTA_EXCEEDED, error=decision.reason
                    )

            self._emit(StepStarted, state.run_id, seq, {"step": step_number})

            # The reminder is appended for this step only, never persisted.
            reminder = compose_step_reminder(state.steps, self._tool_registry)
            instructions = f"{state.instructions}\n\n{reminder}" if reminder else state.instructions
            messages = build_step_messages(state.history, state.steps)

            self._emit(
                LMCallStarted,
                state.run_id,
                seq,
                {"step": step_number, "message_count": len(messages), "reminder": bool(reminder)},
            )

            async def _invoke(provider: BaseLMProvider) -> LMResponse:
                return await provider.invoke(
                    messages, instructions=instructions, tool_schemas=tool_schemas
                )

            try:
                response = await asyncio.wait_for(
                    fallback.execute(self._providers, _invoke),
                    timeout=self._config.step_timeout_seconds,
                )
            except TimeoutError:
                timeout = StepTimeoutError(
                    f"Step {step_number} timed out after "
                    f"{self._config.step_timeout_seconds}s"
                )
                return self._finish(
                    state, seq, fallback, FinishReason.FATAL_ERROR, error=str(timeout)
                )
            except AllProvidersFailedError as exc:
                return self._finish(
                    state, seq, fallback, FinishReason.FATAL_ERROR, error=str(exc)
                )

            self._emit(
                LMCallFinished,
                state.run_id,
                seq,
                {
                    "step": step_number,
                    "tokens_used": response.tokens_used,
                    "tool_calls": len(response.tool_calls),
                },
            )
            if self._quota_guard is not None:
                await self._quota_guard.record_usage(state.context, response.tokens_used)

            if not response.tool_calls and cancel_event is not None and cancel_event.is_set():
                state.steps.append(StepRecord(step_number=step_number, model_text=""))
                self._emit(
                    StepFinished, state.run_id, seq, {"step": step_number, "result": "cancelled"}
                )
                return self._finish(state, seq, fallback, FinishReason.CANCELLED)

            # Responding
            if not response.tool_calls:
                state.steps.append(StepRecord(step_number=step_number, model_text=response.text))
                state.last_text = response.text
                self._emit(
                    StepFinished, state.run_id, seq, {"step": step_number, "result": "respond"}
                )
                reason = (
                    FinishReason.STOP_CONDITION_REACHED
                    if response.text.strip()
                    else FinishReason.MODEL_DECLINED_FURTHER_TOOLS
                )
                return self._finish(state, seq, fallback, reason)

            # ToolExecuting / ToolPending
            step = StepRecord(
                step_number=step_number,
                model_text=response.text,
                tool_invocations=[self._new_invocation(call) for call in response.tool_calls],
            )
            await self._resolve_invocations(state, step.tool_invocations, seq, approved=set())

            if cancel_event is not None and cancel_event.is_set():
                # Tool calls already finished; only the model text is dropped.
                step.model_text = ""
                state.steps.append(step)
                self._emit(
                    StepFinished, state.run_id, seq, {"step": step_number, "result": "cancelled"}
                )
                return self._finish(state, seq, fallback, FinishReason.CANCELLED)

            state.last_text = step.model_text
            if any(
                inv.state == ToolInvocationState.PENDING_APPROVAL for inv in step.tool_invocations
            ):
                return self._pause(state, step, seq, fallback)

            state.steps.append(step)
            self._emit(StepFinished, state.run_id, seq, {"step": step_number, "result": "tools"})

            if step_number >= self._config.max_steps:
                return self._finish(state, seq, fallback, FinishReason.STEP_LIMIT_REACHED)

    # ── Tool handling ──────────────────────────────────────────────

    def _new_invocation(self, call: LMToolCall) -> ToolInvocation:
        gated = self._tool_registry.requires_approval(call.name)
        return ToolInvocation(
            id=generate_tool_invocation_id(),
            call_id=call.id or generate_tool_invocation_id(),
            tool_name=call.name,
            input=dict(call.arguments),
            state=(
                ToolInvocationState.PENDING_APPROVAL if gated else ToolInvocationState.EXECUTING
            ),
        )

    async def _resolve_invocations(
        self,
        state: _RunState,
        invocations: list[ToolInvocation],
        seq: SeqCounter,
        *,
        approved: set[ToolInvocationId],
    ) -> None:
        """Pass each invocation through the gate, in emitted order by default."""
        if self._config.parallel_tool_calls:
            await asyncio.gather(
                *(self._invoke_tool(state, inv, seq, inv.id in approved) for inv in invocations)
            )
            return
        for invocation in invocations:
            await self._invoke_tool(state, invocation, seq, invocation.id in approved)

    async def _invoke_tool(
        self,
        state: _RunState,
        invocation: ToolInvocation,
        seq: SeqCounter,
        approved: bool,
    ) -> None:
        if invocation.state == ToolInvocationState.EXECUTING:
            self._emit(
                ToolCallStarted,
                state.run_id,
                seq,
                {
                    "invocation_id": invocation.id,
                    "tool_name": invocation.tool_name,
                    "approved": approved,
                },
            )

        outcome = await self._tool_registry.invoke(
            invocation.tool_name, invocation.input, state.context, approved=approved
        )
        invocation.state = outcome.state

        if outcome.state == ToolInvocationState.PENDING_APPROVAL:
            self._emit(
                ApprovalRequested,
                state.run_id,
                seq,
                {"invocation_id": invocation.id, "tool_name": invocation.tool_name},
            )
            return

        if isinstance(outcome.result, ToolSuccess):
            invocation.result = outcome.result.data
            invocation.error = None
        elif outcome.result is not None:
            invocation.result = None
            invocation.error = outcome.result.error
            invocation.violations = list(outcome.result.violations)

        self._emit(
            ToolCallFinished,
            state.run_id,
            seq,
            {
                "invocation_id": invocation.id,
                "tool_name": invocation.tool_name,
                "success": invocation.state == ToolInvocationState.SUCCEEDED,
                "error": invocation.error,
            },
        )

    # ── Suspension and resumption ──────────────────────────────────

    def _load_paused(
        self,
        run_id: RunId | None,
        decisions: Mapping[ToolInvocationId, ApprovalDecision],
    ) -> PausedRun:
        paused: PausedRun | None = None
        if run_id is not None:
            paused = self._run_store.load(run_id)
        else:
            for invocation_id in decisions:
                paused = self._run_store.find_by_invocation(invocation_id)
                if paused is not None:
                    break
        if paused is None:
            raise ConfigurationError("No paused run matches the supplied approvals")
        return paused

    def _pause(
        self,
        state: _RunState,
        step: StepRecord,
        seq: SeqCounter,
        fallback: ProviderFallbackExecutor,
    ) -> AgentRunResult:
        paused = PausedRun(
            run_id=state.run_id,
            call_context=state.context,
            history=state.history,
            steps=state.steps,
            pending_step=step,
        )
        self._run_store.save(paused)
        pending = [
            inv for inv in step.tool_invocations
            if inv.state == ToolInvocationState.PENDING_APPROVAL
        ]
        self._emit(
            RunPaused,
            state.run_id,
            seq,
            {"step": step.step_number, "pending": [inv.id for inv in pending]},
        )
        logger.info(
            "Agent run %s paused on step %d awaiting %d approval(s)",
            state.run_id,
            step.step_number,
            len(pending),
        )
        return AgentRunResult(
            run_id=state.run_id,
            text=step.model_text,
            steps=list(state.steps),
            finish_reason=FinishReason.PENDING_APPROVAL,
            pending_invocations=[inv.model_copy() for inv in pending],
            provider_attempts=list(fallback.attempts),
        )

    async def _resume_pending_step(
        self,
        state: _RunState,
        paused: PausedRun,
        decisions: Mapping[ToolInvocationId, ApprovalDecision],
        seq: SeqCounter,
    ) -> AgentRunResult | None:
        """Apply approvals to the paused step.

        Returns a pending-approval result if invocations are still
        undecided, otherwise appends the completed step and returns None.
        """
        step = paused.pending_step.model_copy(deep=True)
        granted: set[ToolInvocationId] = set()
        to_run: list[ToolInvocation] = []

        for invocation in step.tool_invocations:
            if invocation.state != ToolInvocationState.PENDING_APPROVAL:
                continue
            decision = decisions.get(invocation.id)
            if decision is None:
                continue
            self._emit(
                ApprovalResolved,
                state.run_id,
                seq,
                {"invocation_id": invocation.id, "decision": decision.value},
            )
            if decision == ApprovalDecision.GRANTED:
                invocation.state = ToolInvocationState.EXECUTING
                granted.add(invocation.id)
                to_run.append(invocation)
            else:
                invocation.state = ToolInvocationState.FAILED
                invocation.error = (
                    f"The user denied '{invocation.tool_name}'. "
                    f"Do not retry it unless asked. ({ToolErrorKind.DENIED.value})"
                )

        await self._resolve_invocations(state, to_run, seq, approved=granted)

        if any(inv.state == ToolInvocationState.PENDING_APPROVAL for inv in step.tool_invocations):
            fallback = ProviderFallbackExecutor()
            return self._pause(state, step, seq, fallback)

        state.steps.append(step)
        state.last_text = step.model_text
        self._emit(
            StepFinished, state.run_id, seq, {"step": step.step_number, "result": "tools"}
        )
        return None

    # ── Helpers ────────────────────────────────────────────────────

    @staticmethod
    def _resolve_context(call_context: CallContext | Mapping[str, Any] | None) -> CallContext:
        if call_context is None:
            raise UnauthenticatedError("No call context supplied")
        if isinstance(call_context, CallContext):
            return call_context
        tenant_id = call_context.get("tenant_id")
        if not tenant_id or not str(tenant_id).strip():
            raise TenantNotResolvedError("Call context has no tenant id")
        try:
            return CallContext.model_validate(call_context)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid call context: {exc}") from exc

    def _initial_instructions(self, state: _RunState) -> str:
        instructions = compose_initial(
            self._config.base_instructions,
            state.context,
            vertical_prompt=self._config.vertical_prompt,
        )
        extra = [m.content for m in state.history if m.role == MessageRole.SYSTEM]
        return "\n\n".join([instructions, *extra])

    def _emit(
        self,
        event_cls: type[BaseEvent],
        run_id: RunId,
        seq: SeqCounter,
        payload: dict[str, Any],
    ) -> None:
        if self._event_log is None:
            return
        self._event_log.append(event_cls(run_id=run_id, seq=seq.next(), payload=payload))

    def _finish(
        self,
        state: _RunState,
        seq: SeqCounter,
        fallback: ProviderFallbackExecutor,
        reason: FinishReason,
        *,
        error: str | None = None,
    ) -> AgentRunResult:
        self._emit(
            RunFinished,
            state.run_id,
            seq,
            {"finish_reason": reason.value, "steps": len(state.steps), "error": error},
        )
        if error:
            logger.warning("Agent run %s finished with %s: %s", state.run_id, reason.value, error)
        else:
            logger.info(
                "Agent run %s finished with %s after %d step(s)",
                state.run_id,
                reason.value,
                len(state.steps),
            )
        return AgentRunResult(
            run_id=state.run_id,
            text=state.last_text,
            steps=list(state.steps),
            finish_reason=reason,
            error=error,
            provider_attempts=list(fallback.attempts),
        )


async def run_agent(
    history: Iterable[Any] | None,
    call_context: CallContext | Mapping[str, Any] | None,
    approvals: Iterable[Approval | Mapping[str, Any]] | Mapping[str, Any] | None = None,
    *,
    providers: Sequence[BaseLMProvider],
    tool_registry: ToolRegistry,
    config: AgentConfig | None = None,
    run_store: RunStore | None = None,
    event_log: EventLog | None = None,
    quota_guard: QuotaGuard | None = None,
    run_id: RunId | None = None,
    cancel_event: asyncio.Event | None = None,
) -> AgentRunResult:
    """One-shot convenience wrapper around ``AgentRunner.run``.

    Pass the same ``run_store`` across calls so approvals can resume a
    paused run.
    """
    runner = AgentRunner(
        providers,
        tool_registry,
        config=config,
        event_log=event_log,
        run_store=run_store,
        quota_guard=quota_guard,
    )
    return await runner.run(
        history, call_context, approvals, run_id=run_id, cancel_event=cancel_event
    )
