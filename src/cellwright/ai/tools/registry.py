"""Tool registry mapping tool names to specifications and executors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from .catalog import EXIT_PLAN_TOOL, PLAN_TOOLS, agent_tool_specs
from .types import ToolContext, ToolExecutorFn, ToolSpec

__all__ = [
    "ToolRegistry",
    "ToolRegistration",
    "DuplicateToolError",
    "ToolNotFoundError",
    "echo_plan_executor",
    "create_default_registry",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a requested tool is not found in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolRegistration:
    """Record of a registered tool: its spec plus the executor capability."""

    spec: ToolSpec
    executor: ToolExecutorFn

    @property
    def name(self) -> str:
        return self.spec.name


class ToolRegistry:
    """Name-keyed registry of tool specs and their executors.

    The tool name is the discriminant; executors are plain callables rather
    than subclasses, so one external executor can serve a whole catalog.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolRegistration] = {}

    def register(
        self,
        spec: ToolSpec,
        executor: ToolExecutorFn,
        *,
        allow_override: bool = False,
    ) -> ToolRegistration:
        """Register ``spec`` with ``executor``.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """

        if spec.name in self._tools and not allow_override:
            raise DuplicateToolError(spec.name)
        registration = ToolRegistration(spec=spec, executor=executor)
        self._tools[spec.name] = registration
        LOGGER.debug("Registered tool: %s", spec.name)
        return registration

    def register_many(self, specs: Sequence[ToolSpec], executor: ToolExecutorFn) -> None:
        for spec in specs:
            self.register(spec, executor)

    def unregister(self, name: str) -> bool:
        if self._tools.pop(name, None) is None:
            return False
        LOGGER.debug("Unregistered tool: %s", name)
        return True

    def get(self, name: str) -> ToolRegistration | None:
        return self._tools.get(name)

    def get_required(self, name: str) -> ToolRegistration:
        registration = self._tools.get(name)
        if registration is None:
            raise ToolNotFoundError(name)
        return registration

    def has(self, name: str) -> bool:
        return name in self._tools

    def list_names(self, *, category: str | None = None) -> list[str]:
        return [
            name
            for name, registration in self._tools.items()
            if category is None or registration.spec.category == category
        ]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def echo_plan_executor(
    name: str,
    args: Mapping[str, Any],
    conversation_id: str,
    caller_id: str,
    context: ToolContext | None = None,
) -> Mapping[str, Any]:
    """Planning exit tool: no side effects, returns its input verbatim."""

    return dict(args)


def create_default_registry(executor: ToolExecutorFn) -> ToolRegistry:
    """Registry with the document catalog bound to ``executor`` and the plan exit tool."""

    registry = ToolRegistry()
    registry.register_many(agent_tool_specs(), executor)
    for spec in PLAN_TOOLS:
        registry.register(spec, echo_plan_executor)
    LOGGER.debug("Default registry ready with %d tools (plan tool: %s)", len(registry), EXIT_PLAN_TOOL)
    return registry
