"""crmpilot core — identifiers and the error taxonomy."""

from crmpilot.core.errors import (
    AllProvidersFailedError,
    ConfigurationError,
    CRMPilotError,
    InvalidToolInputError,
    StepTimeoutError,
    TenantNotResolvedError,
    ToolExecutionError,
    UnauthenticatedError,
    UnknownToolError,
)
from crmpilot.core.identifiers import (
    RunId,
    ToolInvocationId,
    generate_id,
    generate_run_id,
    generate_tool_invocation_id,
)

__all__ = [
    "AllProvidersFailedError",
    "CRMPilotError",
    "ConfigurationError",
    "InvalidToolInputError",
    "RunId",
    "StepTimeoutError",
    "TenantNotResolvedError",
    "ToolExecutionError",
    "ToolInvocationId",
    "UnauthenticatedError",
    "UnknownToolError",
    "generate_id",
    "generate_run_id",
    "generate_tool_invocation_id",
]
