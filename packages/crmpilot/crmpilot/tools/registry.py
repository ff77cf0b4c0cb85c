"""Tool registry — registration, lookup and the approval gate."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from crmpilot.core.errors import (
    ConfigurationError,
    InvalidToolInputError,
    UnknownToolError,
)
from crmpilot.schemas.context import CallContext
from crmpilot.schemas.run import ToolInvocationState
from crmpilot.tools.base import (
    BaseTool,
    EntityRefSpec,
    FunctionTool,
    ToolErrorKind,
    ToolExecutor,
    ToolFailure,
    ToolResult,
    ToolSuccess,
)

logger = logging.getLogger(__name__)

# Input fields that would let the model pick a tenant other than the context's.
_TENANT_FIELDS = frozenset({"tenant_id", "tenantId", "organization_id", "organizationId"})


@dataclass(frozen=True)
class ToolOutcome:
    """Result of passing one call through the registry's gate."""

    state: ToolInvocationState
    result: ToolResult | None = None


def _violations(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]) or "<root>",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]


def _jsonable(data: dict[str, Any]) -> dict[str, Any]:
    return json.loads(json.dumps(data, default=str))


class ToolRegistry:
    """Registry for managing available tools.

    Enforces unique tool names at registration time and gates execution
    of tools flagged ``requires_approval``.
    """

    def __init__(self) -> None:
        self._tools: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool. Raises ConfigurationError if name is already taken."""
        if tool.name in self._tools:
            raise ConfigurationError(f"Tool '{tool.name}' is already registered")
        leaked = _TENANT_FIELDS.intersection(tool.input_schema.model_fields)
        if leaked:
            raise ConfigurationError(
                f"Tool '{tool.name}' input schema must not accept tenant fields: "
                f"{', '.join(sorted(leaked))}"
            )
        self._tools[tool.name] = tool

    def register_function(
        self,
        name: str,
        input_schema: type[BaseModel],
        executor: ToolExecutor,
        *,
        requires_approval: bool = False,
        description: str = "",
        entity_refs: EntityRefSpec | None = None,
    ) -> BaseTool:
        """Register a plain async function as a tool and return it."""
        tool = FunctionTool(
            name,
            input_schema,
            executor,
            description=description,
            requires_approval=requires_approval,
            entity_refs=entity_refs,
        )
        self.register(tool)
        return tool

    def lookup(self, name: str) -> BaseTool:
        """Look up a tool by name. Raises UnknownToolError if not found."""
        if name not in self._tools:
            raise UnknownToolError(
                f"Unknown tool '{name}'. Available tools: {', '.join(self._tools)}"
            )
        return self._tools[name]

    def list_tools(self) -> list[BaseTool]:
        """Return all registered tools."""
        return list(self._tools.values())

    def has(self, name: str) -> bool:
        """Check if a tool is registered."""
        return name in self._tools

    def requires_approval(self, name: str) -> bool:
        return self.has(name) and self._tools[name].requires_approval

    def tool_schemas(self) -> list[dict[str, Any]]:
        """Protocol-level tool list (schemas only, never executors)."""
        return [tool.to_schema() for tool in self._tools.values()]

    def validate(self, name: str, raw_input: dict[str, Any] | None) -> BaseModel:
        """Validate raw input for a tool.

        Raises UnknownToolError or InvalidToolInputError.
        """
        tool = self.lookup(name)
        try:
            return tool.validate_input(raw_input or {})
        except ValidationError as exc:
            violations = _violations(exc)
            summary = "; ".join(f"{v['field']}: {v['message']}" for v in violations)
            raise InvalidToolInputError(
                f"Invalid input for tool '{name}': {summary}", violations
            ) from exc

    async def invoke(
        self,
        name: str,
        raw_input: dict[str, Any] | None,
        context: CallContext,
        *,
        approved: bool = False,
    ) -> ToolOutcome:
        """Pass one call through the gate and execute it at most once.

        Unknown tools and invalid input are returned as structured failures
        so the model can correct itself. Tools requiring approval return
        PENDING_APPROVAL without running unless ``approved`` is set.
        """
        try:
            validated = self.validate(name, raw_input)
        except UnknownToolError as exc:
            return ToolOutcome(
                ToolInvocationState.FAILED,
                ToolFailure(error=str(exc), kind=ToolErrorKind.UNKNOWN_TOOL),
            )
        except InvalidToolInputError as exc:
            return ToolOutcome(
                ToolInvocationState.FAILED,
                ToolFailure(
                    error=str(exc),
                    kind=ToolErrorKind.INVALID_INPUT,
                    violations=exc.violations,
                ),
            )

        tool = self._tools[name]
        if tool.requires_approval and not approved:
            return ToolOutcome(ToolInvocationState.PENDING_APPROVAL)

        try:
            raw = await tool.execute(validated, context)
        except Exception as exc:
            logger.warning("Tool '%s' raised: %s", name, exc)
            return ToolOutcome(
                ToolInvocationState.FAILED,
                ToolFailure(error=f"Tool '{name}' failed: {exc}"),
            )

        result = self._coerce(name, raw)
        state = (
            ToolInvocationState.SUCCEEDED
            if isinstance(result, ToolSuccess)
            else ToolInvocationState.FAILED
        )
        return ToolOutcome(state, result)

    @staticmethod
    def _coerce(name: str, raw: Any) -> ToolResult:
        if isinstance(raw, ToolSuccess):
            return ToolSuccess(data=_jsonable(raw.data))
        if isinstance(raw, ToolFailure):
            return raw
        if isinstance(raw, dict):
            return ToolSuccess(data=_jsonable(raw))
        return ToolFailure(
            error=f"Tool '{name}' returned {type(raw).__name__}, expected a mapping"
        )

    def __len__(self) -> int:
        return len(self._tools)
