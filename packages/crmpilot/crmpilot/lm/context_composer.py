"""Context composer — initial instructions and per-step memory reminders."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from crmpilot.lm.vertical_prompts import get_vertical_prompt
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.run import StepRecord, ToolInvocationState
from crmpilot.tools.base import EntityRef
from crmpilot.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

BASE_INSTRUCTIONS = """You are CRM Pilot, an intelligent sales assistant.

PERSONALITY:
- Be proactive, friendly and analytical
- Natural answers, avoid robotic lists
- At most 2 paragraphs per answer

CONVERSATION MEMORY (VERY IMPORTANT):
- USE information from earlier messages. If you already searched deals, reuse their ids.
- When the user says "this deal", "it", "the only one", use the id of the deal mentioned before.
- Do NOT search again if the information is already in the conversation.

RULES:
- Always explain tool results
- If a tool fails, tell the user in a friendly way
- Use the board id from the context automatically when available
- Destructive actions (create, move, mark won/lost) require user approval
- PREFER ids you already know over searching again"""


def _format_money(value: float) -> str:
    return f"R$ {value:,.2f}"


def _metrics_lines(ctx: CallContext) -> list[str]:
    lines: list[str] = []
    if ctx.board_id:
        lines.append(f"Board ID: {ctx.board_id}")
    if ctx.board_name:
        lines.append(f"Board name: {ctx.board_name}")
    if ctx.deal_id:
        lines.append(f"Deal ID: {ctx.deal_id}")
    if ctx.contact_id:
        lines.append(f"Contact ID: {ctx.contact_id}")
    if ctx.stages:
        lines.append("Stages: " + ", ".join(f"{s.name} ({s.id})" for s in ctx.stages))

    metrics: list[str] = []
    if ctx.deal_count is not None:
        metrics.append(f"  - Deals: {ctx.deal_count}")
    if ctx.pipeline_value is not None:
        metrics.append(f"  - Pipeline: {_format_money(ctx.pipeline_value)}")
    if ctx.stagnant_deals is not None:
        metrics.append(f"  - Stagnant: {ctx.stagnant_deals}")
    if ctx.overdue_deals is not None:
        metrics.append(f"  - Overdue: {ctx.overdue_deals}")
    if metrics:
        lines.append("Metrics:")
        lines.extend(metrics)

    if ctx.won_stage:
        lines.append(f"Won stage: {ctx.won_stage}")
    if ctx.lost_stage:
        lines.append(f"Lost stage: {ctx.lost_stage}")
    if ctx.user_name:
        lines.append(f"User: {ctx.user_name}")
    return lines


def compose_initial(
    base_instructions: str,
    call_context: CallContext,
    *,
    vertical_prompt: str | None = None,
) -> str:
    """Build the first-step instructions.

    Layers: persona/rules, then a vertical block when the tenant has a
    vertical configured (``vertical_prompt`` overrides the built-in block
    for ``call_context.business_type``), then a live-context block with
    one line per non-null field. Missing fields are omitted, never errors.
    """
    sections = [base_instructions.strip()]

    vertical = vertical_prompt or get_vertical_prompt(call_context.business_type)
    if vertical:
        sections.append(vertical.strip())

    lines = _metrics_lines(call_context)
    if lines:
        sections.append("====== USER CONTEXT ======\n" + "\n".join(lines))

    return "\n\n".join(sections)


@dataclass(frozen=True)
class KnownEntities:
    """Entities already surfaced by tool results, in discovery order."""

    entities: tuple[EntityRef, ...] = ()

    @property
    def last(self) -> EntityRef | None:
        return self.entities[-1] if self.entities else None

    def of_kind(self, kind: str) -> tuple[EntityRef, ...]:
        return tuple(e for e in self.entities if e.kind == kind)


def extract_known_entities(
    steps: Sequence[StepRecord], registry: ToolRegistry
) -> KnownEntities:
    """Reduce step records to the entities the model has already seen.

    Only successful invocations of tools that declare ``entity_refs`` are
    considered. An entity seen again moves to the end (most recent).
    """
    seen: dict[tuple[str, str], EntityRef] = {}
    for step in steps:
        for invocation in step.tool_invocations:
            if invocation.state != ToolInvocationState.SUCCEEDED or not invocation.result:
                continue
            if not registry.has(invocation.tool_name):
                continue
            spec = registry.lookup(invocation.tool_name).entity_refs
            if spec is None:
                continue
            for ref in spec.extract(invocation.result):
                key = (ref.kind, ref.id)
                seen.pop(key, None)
                seen[key] = ref
    return KnownEntities(tuple(seen.values()))


def compose_step_reminder(steps: Sequence[StepRecord], registry: ToolRegistry) -> str:
    """Memory reminder for the next step, or '' when nothing is known.

    Names the most recently discovered entity and tells the model to reuse
    its id instead of querying again. Recomputed from scratch every step.
    """
    known = extract_known_entities(steps, registry)
    last = known.last
    if last is None:
        return ""

    count = len(known.of_kind(last.kind))
    logger.debug("Step reminder: %d %s(s) known, last=%s", count, last.kind, last.id)
    return (
        f"[CONVERSATION CONTEXT: You already retrieved {count} {last.kind}(s). "
        f'The most recent was "{last.label}" (ID: {last.id}). Use this ID '
        f'directly when the user refers to "this {last.kind}", "it" or '
        f'"the only one" instead of searching again.]'
    )
