"""CRM Pilot — conversational tool-calling agent runtime for a multi-tenant CRM."""

from crmpilot.lm.agent_runner import AgentRunner, run_agent
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.run import AgentRunResult, Approval, FinishReason

__version__ = "0.1.0"

__all__ = [
    "AgentRunResult",
    "AgentRunner",
    "Approval",
    "CallContext",
    "FinishReason",
    "run_agent",
]
