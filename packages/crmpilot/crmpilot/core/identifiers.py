"""Core identifier types for crmpilot."""

from __future__ import annotations

import uuid
from typing import NewType

RunId = NewType("RunId", str)
ToolInvocationId = NewType("ToolInvocationId", str)


def generate_id() -> str:
    """Generate a unique identifier (UUID4)."""
    return str(uuid.uuid4())


def generate_run_id() -> RunId:
    """Generate a new RunId."""
    return RunId(generate_id())


def generate_tool_invocation_id() -> ToolInvocationId:
    """Generate a new ToolInvocationId."""
    return ToolInvocationId(generate_id())
