"""Core error hierarchy for crmpilot."""

from __future__ import annotations

from typing import Any


class CRMPilotError(Exception):
    """Base exception for all crmpilot errors."""


class ConfigurationError(CRMPilotError):
    """Raised when the agent is wired incorrectly (duplicate tools, bad context)."""


class UnauthenticatedError(CRMPilotError):
    """Raised when a run is requested without a resolved identity."""


class TenantNotResolvedError(UnauthenticatedError):
    """Raised when the call context carries no tenant id."""


class UnknownToolError(CRMPilotError):
    """Raised when a tool name is not present in the registry."""


class InvalidToolInputError(CRMPilotError):
    """Raised when raw tool input fails schema validation.

    ``violations`` holds one entry per failing field, in the form
    ``{"field": "a.b", "message": "..."}``.
    """

    def __init__(self, message: str, violations: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.violations = list(violations or [])


class ToolExecutionError(CRMPilotError):
    """Raised by tool executors to signal a domain failure."""


class AllProvidersFailedError(CRMPilotError):
    """Raised when every configured LM provider failed for one call."""

    def __init__(
        self,
        message: str,
        *,
        last_error: BaseException | None = None,
        attempts: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.last_error = last_error
        self.attempts = list(attempts or [])


class StepTimeoutError(CRMPilotError):
    """Raised when a model invocation exceeds the per-step time limit."""
