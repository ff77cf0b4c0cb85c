"""crmpilot tools — typed tool interface, registry and the CRM tool set."""

from crmpilot.tools.base import (
    BaseTool,
    EntityRef,
    EntityRefSpec,
    FunctionTool,
    ToolErrorKind,
    ToolFailure,
    ToolResult,
    ToolSuccess,
)
from crmpilot.tools.crm import build_crm_registry, create_crm_tools
from crmpilot.tools.registry import ToolOutcome, ToolRegistry
from crmpilot.tools.store import CRMStore

__all__ = [
    "BaseTool",
    "CRMStore",
    "EntityRef",
    "EntityRefSpec",
    "FunctionTool",
    "ToolErrorKind",
    "ToolFailure",
    "ToolOutcome",
    "ToolRegistry",
    "ToolResult",
    "ToolSuccess",
    "build_crm_registry",
    "create_crm_tools",
]
