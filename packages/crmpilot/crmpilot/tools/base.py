"""Tool substrate — base tool class, result types and entity declarations."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, Field

from crmpilot.schemas.context import CallContext


class ToolErrorKind(StrEnum):
    """Classification of a structured tool failure."""

    UNKNOWN_TOOL = "unknown_tool"
    INVALID_INPUT = "invalid_input"
    EXECUTION_ERROR = "execution_error"
    DENIED = "denied"


class ToolSuccess(BaseModel):
    """Successful tool result. ``data`` must be JSON-serializable."""

    success: Literal[True] = True
    data: dict[str, Any] = Field(default_factory=dict)


class ToolFailure(BaseModel):
    """Structured tool failure, fed back to the model as a tool result."""

    success: Literal[False] = False
    error: str
    kind: ToolErrorKind = ToolErrorKind.EXECUTION_ERROR
    violations: list[dict[str, Any]] = Field(default_factory=list)


ToolResult = ToolSuccess | ToolFailure


@dataclass(frozen=True)
class EntityRef:
    """An entity the model has already seen in a tool result."""

    kind: str
    id: str
    label: str


@dataclass(frozen=True)
class EntityRefSpec:
    """Declares which result fields of a tool denote entity references.

    With ``collection_field`` set, each item of ``data[collection_field]``
    is an entity; otherwise the result itself is a single entity.
    """

    kind: str
    collection_field: str | None = None
    id_field: str = "id"
    label_field: str = "title"

    def extract(self, data: dict[str, Any]) -> list[EntityRef]:
        if self.collection_field is not None:
            items = data.get(self.collection_field)
            if not isinstance(items, list):
                return []
        else:
            items = [data]

        refs: list[EntityRef] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            entity_id = item.get(self.id_field)
            if not entity_id:
                continue
            label = item.get(self.label_field) or "Unknown"
            refs.append(EntityRef(kind=self.kind, id=str(entity_id), label=str(label)))
        return refs


class BaseTool(ABC):
    """Abstract base class for all crmpilot tools.

    Each tool declares a name, a Pydantic input schema, whether it needs
    human approval before running, and an async execute method that
    receives the validated input and the run's CallContext.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique name identifying this tool."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description shown to the model."""

    @property
    @abstractmethod
    def input_schema(self) -> type[BaseModel]:
        """Pydantic model class for validating input."""

    @property
    def requires_approval(self) -> bool:
        """Whether execution must wait for an external approval."""
        return False

    @property
    def entity_refs(self) -> EntityRefSpec | None:
        """Entity reference declaration used for cross-step memory."""
        return None

    @abstractmethod
    async def execute(
        self, input_data: BaseModel, context: CallContext
    ) -> ToolResult | dict[str, Any]:
        """Execute the tool with validated input."""

    def validate_input(self, raw: dict[str, Any]) -> BaseModel:
        """Validate raw input dict against the input schema."""
        return self.input_schema.model_validate(raw)

    def to_schema(self) -> dict[str, Any]:
        """Protocol-level tool definition (OpenAI function format)."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema.model_json_schema(),
            },
        }


ToolExecutor = Callable[[Any, CallContext], Awaitable["ToolResult | dict[str, Any]"]]


class FunctionTool(BaseTool):
    """A tool built from a plain async function."""

    def __init__(
        self,
        name: str,
        input_schema: type[BaseModel],
        executor: ToolExecutor,
        *,
        description: str = "",
        requires_approval: bool = False,
        entity_refs: EntityRefSpec | None = None,
    ) -> None:
        self._name = name
        self._input_schema = input_schema
        self._executor = executor
        self._description = description or name
        self._requires_approval = requires_approval
        self._entity_refs = entity_refs

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    @property
    def input_schema(self) -> type[BaseModel]:
        return self._input_schema

    @property
    def requires_approval(self) -> bool:
        return self._requires_approval

    @property
    def entity_refs(self) -> EntityRefSpec | None:
        return self._entity_refs

    async def execute(
        self, input_data: BaseModel, context: CallContext
    ) -> ToolResult | dict[str, Any]:
        return await self._executor(input_data, context)
