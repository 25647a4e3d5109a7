"""Tool system types: specifications, execution context and results."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Mapping, Protocol, runtime_checkable

from ..cancellation import CancellationToken
from .schema import ObjectSchema, compile_parameters

__all__ = [
    "ToolCategory",
    "ToolSpec",
    "CompiledTool",
    "ToolContext",
    "ToolExecutorFn",
    "ToolResult",
    "is_error_payload",
]


class ToolCategory:
    """Standard tool categories for organization."""

    SPREADSHEET = "spreadsheet"
    DOCUMENT = "document"
    PLAN = "plan"


# -----------------------------------------------------------------------------
# Tool Specification
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolSpec:
    """Declarative description of a callable tool.

    Attributes:
        name: Unique identifier the model calls the tool by.
        description: Human-readable description shown to the model.
        schema: Declarative parameter schema (root must be an object).
        category: Tool category for organization.
        is_write: Whether the tool mutates a persisted document.
    """

    name: str
    description: str
    schema: ObjectSchema = field(default_factory=ObjectSchema)
    category: str = ToolCategory.SPREADSHEET
    is_write: bool = False

    def compile(self) -> "CompiledTool":
        """Lower the schema; raises ``SchemaCompilationError`` on unsupported shapes."""

        return CompiledTool(
            name=self.name,
            description=self.description,
            parameters=compile_parameters(self.schema),
            spec=self,
        )


@dataclass(slots=True, frozen=True)
class CompiledTool:
    """A tool whose parameters are already strict JSON Schema."""

    name: str
    description: str
    parameters: Mapping[str, Any]
    spec: ToolSpec

    def to_responses_tool(self) -> dict[str, Any]:
        """Flat function tool used by the event-stream protocol."""

        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": dict(self.parameters),
            "strict": True,
        }

    def to_chat_tool(self) -> dict[str, Any]:
        """Nested function tool used by the delta-chunk protocol."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": dict(self.parameters),
            },
        }


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolContext:
    """Per-session information handed to tool executors."""

    conversation_id: str
    caller_id: str
    cancellation: CancellationToken | None = None
    extras: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class ToolExecutorFn(Protocol):
    """Capability executing one named tool; may be sync or async.

    Returning a mapping with an ``error`` key reports a failed call.
    """

    def __call__(
        self,
        name: str,
        args: Mapping[str, Any],
        conversation_id: str,
        caller_id: str,
        context: ToolContext | None = None,
    ) -> Any | Awaitable[Any]:
        ...


def is_error_payload(payload: Any) -> bool:
    return isinstance(payload, Mapping) and "error" in payload


@dataclass(slots=True, frozen=True)
class ToolResult:
    """Outcome of one tool call, fed back to the model as that call's output."""

    call_id: str
    name: str
    payload: Any
    success: bool
    duration_ms: float = 0.0

    @classmethod
    def from_payload(cls, call_id: str, name: str, payload: Any, *, duration_ms: float = 0.0) -> "ToolResult":
        return cls(call_id, name, payload, not is_error_payload(payload), duration_ms)

    @classmethod
    def from_error(cls, call_id: str, name: str, message: str, *, duration_ms: float = 0.0) -> "ToolResult":
        return cls(call_id, name, {"error": message}, False, duration_ms)

    def to_output(self) -> str:
        """Serialize the payload for the model; non-JSON values fall back to ``str``."""

        return json.dumps(self.payload, ensure_ascii=False, default=str)
