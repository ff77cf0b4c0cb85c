"""Agent configuration — settings for the AgentRunner loop."""

from __future__ import annotations

from pydantic import BaseModel, Field

from crmpilot.lm.context_composer import BASE_INSTRUCTIONS


class AgentConfig(BaseModel):
    """Configuration for the AgentRunner step loop."""

    base_instructions: str = Field(
        default=BASE_INSTRUCTIONS,
        description="Persona and rules placed first in the instructions",
    )
    vertical_prompt: str | None = Field(
        default=None,
        description="Tenant vertical block; overrides the built-in one for the business type",
    )
    max_steps: int = Field(default=10, gt=0, description="Maximum agent steps per run")
    step_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Time limit for one model invocation"
    )
    parallel_tool_calls: bool = Field(
        default=False,
        description="Run the non-gated tool calls of a step concurrently",
    )
