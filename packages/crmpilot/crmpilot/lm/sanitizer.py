"""Message sanitizer — normalize caller-supplied history for the model.

Histories arrive from the chat UI or the persistence layer in several
shapes: ``ConversationMessage`` objects, dicts with string content, dicts
with multi-part content, and assistant entries carrying prior tool
invocations. ``sanitize`` reduces all of them to plain-text messages.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from crmpilot.schemas.messages import ConversationMessage, MessageRole

_ROLES = {role.value for role in MessageRole}

# "result" is the terminal state name used by older chat clients.
_TERMINAL_STATES = frozenset({"succeeded", "failed", "result", "output-available", "output-error"})
_FAILED_STATES = frozenset({"failed", "output-error"})


def _field(entry: Any, *names: str) -> Any:
    if isinstance(entry, Mapping):
        for name in names:
            if name in entry:
                return entry[name]
        return None
    for name in names:
        if hasattr(entry, name):
            return getattr(entry, name)
    return None


def _flatten_content(content: Any) -> str:
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [
            str(_field(part, "text") or "")
            for part in content
            if _field(part, "type") == "text"
        ]
        return "\n".join(parts).strip()
    return ""


def _is_terminal(invocation: Any) -> bool:
    state = _field(invocation, "state")
    return str(getattr(state, "value", state) or "") in _TERMINAL_STATES


def summarize_invocation(invocation: Any) -> str:
    """One human-readable line for a finished tool invocation."""
    name = _field(invocation, "tool_name", "toolName") or "tool"
    result = _field(invocation, "result", "output")
    state = _field(invocation, "state")
    if str(getattr(state, "value", state) or "") in _FAILED_STATES:
        error = _field(invocation, "error", "errorText")
        if not error and isinstance(result, Mapping):
            error = result.get("error")
        return f"[{name}] failed: {error or 'unknown error'}"
    if isinstance(result, Mapping):
        if result.get("success") is False or (result.get("error") and "message" not in result):
            return f"[{name}] failed: {result.get('error') or 'unknown error'}"
        if isinstance(result.get("data"), Mapping):
            result = result["data"]
        if result.get("message"):
            return str(result["message"])
        if isinstance(result.get("deals"), list):
            return f"{len(result['deals'])} deals found."
        metrics = result.get("metrics")
        if isinstance(metrics, Mapping) and "winRate" in metrics:
            return f"Win Rate: {metrics['winRate']}%"
    return f"Tool {name} completed"


def sanitize(history: Iterable[Any] | None) -> list[ConversationMessage]:
    """Return the history as ordered plain-text ConversationMessages.

    Entries without a recognised role are dropped. Prior tool invocations
    in a terminal state are collapsed to one summary line each and appended
    to the entry's text; pending ones are ignored. Entries whose text ends
    up empty are dropped. Pure and deterministic.
    """
    sanitized: list[ConversationMessage] = []
    for entry in history or []:
        if entry is None:
            continue
        role = _field(entry, "role")
        role = getattr(role, "value", role)
        if role not in _ROLES:
            continue

        text = _flatten_content(_field(entry, "content"))
        if not text:
            text = _flatten_content(_field(entry, "parts"))

        invocations = _field(entry, "tool_invocations", "toolInvocations") or []
        summaries = [summarize_invocation(inv) for inv in invocations if _is_terminal(inv)]
        if summaries:
            summary = "\n".join(summaries)
            text = f"{text}\n\n{summary}" if text else summary

        if text:
            sanitized.append(ConversationMessage(role=MessageRole(role), content=text))
    return sanitized
