"""Tool router: builds the per-session tool set and dispatches tool calls."""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError, best_match

from ..errors import OperationCancelledError, SchemaCompilationError
from ..models import ModelCapabilities
from .catalog import PLAN_TOOLS, agent_tool_specs
from .native import NativeToolsConfig, build_native_tools, native_tool_names
from .registry import ToolRegistration, ToolRegistry
from .schema import fill_defaults, fill_missing_optionals
from .selector import RetrievalDecision
from .types import CompiledTool, ToolContext, ToolResult

__all__ = ["AgentMode", "ToolCall", "ToolSet", "ToolRouter"]

LOGGER = logging.getLogger(__name__)

AgentMode = Literal["plan", "agent"]


@dataclass(slots=True, frozen=True)
class ToolCall:
    """A completed function call requested by the model."""

    call_id: str
    name: str
    arguments: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class ToolSet:
    """Tools offered for one session, fixed at session start."""

    mode: AgentMode
    functions: tuple[CompiledTool, ...]
    native: tuple[Mapping[str, Any], ...]
    registrations: Mapping[str, ToolRegistration]
    validators: Mapping[str, Draft202012Validator]
    decision: RetrievalDecision = field(default_factory=RetrievalDecision)

    @property
    def function_names(self) -> list[str]:
        return [tool.name for tool in self.functions]

    @property
    def names(self) -> list[str]:
        return self.function_names + native_tool_names(self.native)

    def has_native(self, kind: str) -> bool:
        return any(str(tool.get("type", "")).startswith(kind) for tool in self.native)


class ToolRouter:
    """Assemble tool sets from a :class:`ToolRegistry` and execute tool calls."""

    def __init__(self, registry: ToolRegistry, *, tool_timeout: float | None = None) -> None:
        self._registry = registry
        self._tool_timeout = tool_timeout

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def build_tool_set(
        self,
        mode: AgentMode,
        capabilities: ModelCapabilities,
        decision: RetrievalDecision,
        *,
        provider: str = "openai",
        native_config: NativeToolsConfig | None = None,
    ) -> ToolSet:
        """Build the tools for ``mode``.

        Planning mode exposes only the plan exit tool. Agent mode exposes the
        document catalog plus native capabilities the model supports, with
        web search governed by ``decision``.

        Raises:
            SchemaCompilationError: If any tool schema cannot be compiled.
        """

        specs = PLAN_TOOLS if mode == "plan" else agent_tool_specs()
        functions: list[CompiledTool] = []
        registrations: dict[str, ToolRegistration] = {}
        validators: dict[str, Draft202012Validator] = {}
        if capabilities.supports_tools:
            for spec in specs:
                registration = self._registry.get(spec.name)
                if registration is None:
                    LOGGER.debug("Tool %s has no registered executor; skipping", spec.name)
                    continue
                compiled = registration.spec.compile()
                try:
                    Draft202012Validator.check_schema(dict(compiled.parameters))
                except SchemaError as exc:
                    raise SchemaCompilationError(exc.message, path=spec.name) from exc
                functions.append(compiled)
                registrations[spec.name] = registration
                validators[spec.name] = Draft202012Validator(dict(compiled.parameters))

        native: list[Mapping[str, Any]] = []
        if mode == "agent":
            config = native_config or NativeToolsConfig()
            if decision.force_restricted_retrieval:
                config = config.with_web_search(None)
            elif decision.web_search.enabled and not config.web_search_disabled:
                config = config.with_web_search(decision.web_search.context_size)
            else:
                config = config.with_web_search(None)
            native = build_native_tools(provider, capabilities, config)

        tool_set = ToolSet(
            mode=mode,
            functions=tuple(functions),
            native=tuple(native),
            registrations=registrations,
            validators=validators,
            decision=decision,
        )
        LOGGER.debug("Built %s tool set: %s", mode, tool_set.names)
        return tool_set

    async def execute(self, tool_set: ToolSet, call: ToolCall, context: ToolContext) -> ToolResult:
        """Run one tool call, converting every failure into an ``{error}`` result.

        Cancellation is the only exception that escapes.
        """

        started = time.perf_counter()

        def _elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        registration = tool_set.registrations.get(call.name)
        if registration is None:
            LOGGER.warning("Model requested unknown tool %s (call %s)", call.name, call.call_id)
            return ToolResult.from_error(call.call_id, call.name, f"Unknown tool: {call.name}")

        arguments = fill_missing_optionals(registration.spec.schema, dict(call.arguments))
        validator = tool_set.validators.get(call.name)
        if validator is not None:
            error = best_match(validator.iter_errors(arguments))
            if error is not None:
                location = "/".join(str(part) for part in error.absolute_path) or "arguments"
                message = f"Invalid arguments for {call.name} at {location}: {error.message}"
                LOGGER.info("%s", message)
                return ToolResult.from_error(call.call_id, call.name, message, duration_ms=_elapsed())

        args = fill_defaults(registration.spec.schema, arguments)
        LOGGER.debug("Executing tool %s (call %s)", call.name, call.call_id)
        try:
            outcome = registration.executor(
                call.name, args, context.conversation_id, context.caller_id, context
            )
            if inspect.isawaitable(outcome):
                outcome = await asyncio.wait_for(outcome, timeout=self._tool_timeout)
        except (OperationCancelledError, asyncio.CancelledError):
            raise
        except asyncio.TimeoutError:
            LOGGER.warning("Tool %s timed out after %ss", call.name, self._tool_timeout)
            return ToolResult.from_error(
                call.call_id,
                call.name,
                f"Tool '{call.name}' timed out after {self._tool_timeout}s",
                duration_ms=_elapsed(),
            )
        except Exception as exc:
            LOGGER.warning("Tool %s failed: %s", call.name, exc, exc_info=True)
            return ToolResult.from_error(call.call_id, call.name, str(exc) or type(exc).__name__, duration_ms=_elapsed())

        result = ToolResult.from_payload(call.call_id, call.name, outcome, duration_ms=_elapsed())
        LOGGER.debug(
            "Tool %s finished in %.1fms (success=%s)", call.name, result.duration_ms, result.success
        )
        return result
