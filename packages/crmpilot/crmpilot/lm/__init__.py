"""crmpilot LM sub-package — provider interface, fallback, composition and the agent loop."""

from crmpilot.lm.agent_config import AgentConfig
from crmpilot.lm.agent_runner import AgentRunner, build_step_messages, run_agent
from crmpilot.lm.context_composer import (
    BASE_INSTRUCTIONS,
    KnownEntities,
    compose_initial,
    compose_step_reminder,
    extract_known_entities,
)
from crmpilot.lm.fallback import ProviderFallbackExecutor
from crmpilot.lm.provider import BaseLMProvider, LMMessage, LMResponse, LMToolCall
from crmpilot.lm.sanitizer import sanitize, summarize_invocation
from crmpilot.lm.vertical_prompts import VERTICAL_PROMPTS, get_vertical_prompt

__all__ = [
    "AgentConfig",
    "AgentRunner",
    "BASE_INSTRUCTIONS",
    "BaseLMProvider",
    "KnownEntities",
    "LMMessage",
    "LMResponse",
    "LMToolCall",
    "ProviderFallbackExecutor",
    "VERTICAL_PROMPTS",
    "build_step_messages",
    "compose_initial",
    "compose_step_reminder",
    "extract_known_entities",
    "get_vertical_prompt",
    "run_agent",
    "sanitize",
    "summarize_invocation",
]
