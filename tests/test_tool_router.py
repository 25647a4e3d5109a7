"""Tests for the tool registry and router."""

from __future__ import annotations

import asyncio

import pytest

from cellwright.ai.errors import OperationCancelledError, SchemaCompilationError
from cellwright.ai.models import ModelCapabilities, get_model_capabilities
from cellwright.ai.tools.catalog import EXIT_PLAN_TOOL, agent_tool_specs
from cellwright.ai.tools.native import NativeToolsConfig
from cellwright.ai.tools.registry import (
    DuplicateToolError,
    ToolNotFoundError,
    ToolRegistry,
    create_default_registry,
)
from cellwright.ai.tools.router import ToolCall, ToolRouter
from cellwright.ai.tools.schema import EnumSchema, ObjectSchema
from cellwright.ai.tools.selector import RetrievalDecision, WebSearchDecision
from cellwright.ai.tools.types import ToolCategory, ToolContext, ToolSpec

from helpers import RecordingExecutor

_CONTEXT = ToolContext("chat-1", "user-1")
_WEB = RetrievalDecision(False, WebSearchDecision(True, "low"))


# -----------------------------------------------------------------------------
# Registry
# -----------------------------------------------------------------------------


def test_default_registry_contents(executor: RecordingExecutor) -> None:
    registry = create_default_registry(executor)

    assert len(registry) == len(agent_tool_specs()) + 1
    assert EXIT_PLAN_TOOL in registry
    assert "update_document" in registry.list_names(category=ToolCategory.DOCUMENT)
    assert registry.list_names(category=ToolCategory.PLAN) == [EXIT_PLAN_TOOL]


def test_duplicate_registration_is_rejected(executor: RecordingExecutor) -> None:
    registry = ToolRegistry()
    spec = ToolSpec("echo", "Echo")
    registry.register(spec, executor)

    with pytest.raises(DuplicateToolError):
        registry.register(spec, executor)
    registry.register(spec, executor, allow_override=True)
    assert len(registry) == 1


def test_unregister_and_lookup(executor: RecordingExecutor) -> None:
    registry = ToolRegistry()
    registry.register(ToolSpec("echo", "Echo"), executor)

    assert registry.unregister("echo") is True
    assert registry.unregister("echo") is False
    assert registry.get("echo") is None
    with pytest.raises(ToolNotFoundError):
        registry.get_required("echo")


# -----------------------------------------------------------------------------
# Tool sets
# -----------------------------------------------------------------------------


def test_plan_mode_exposes_only_exit_tool(router: ToolRouter) -> None:
    tool_set = router.build_tool_set("plan", get_model_capabilities("gpt-5"), _WEB, provider="openai")

    assert tool_set.function_names == [EXIT_PLAN_TOOL]
    assert tool_set.native == ()


def test_agent_mode_adds_supported_natives(router: ToolRouter) -> None:
    tool_set = router.build_tool_set(
        "agent",
        get_model_capabilities("gpt-5"),
        _WEB,
        provider="openai",
        native_config=NativeToolsConfig.from_mapping({"codeInterpreter": True}),
    )

    assert len(tool_set.functions) == len(agent_tool_specs())
    assert tool_set.has_native("web_search")
    assert tool_set.has_native("code_interpreter")
    assert "web_search" in tool_set.names


def test_unsupported_natives_are_dropped(router: ToolRouter) -> None:
    tool_set = router.build_tool_set(
        "agent",
        get_model_capabilities("GLM-4.7"),
        _WEB,
        provider="zai",
        native_config=NativeToolsConfig.from_mapping({"codeInterpreter": True}),
    )

    assert tool_set.has_native("web_search")
    assert not tool_set.has_native("code_interpreter")


def test_model_without_tool_support_gets_no_functions(router: ToolRouter) -> None:
    tool_set = router.build_tool_set("agent", ModelCapabilities(supports_tools=False), RetrievalDecision())

    assert tool_set.functions == ()


def test_heuristic_off_removes_requested_web_search(router: ToolRouter) -> None:
    tool_set = router.build_tool_set(
        "agent",
        get_model_capabilities("gpt-5"),
        RetrievalDecision(),
        native_config=NativeToolsConfig.from_mapping({"webSearch": True}),
    )

    assert not tool_set.has_native("web_search")


def test_explicit_opt_out_vetoes_heuristic(router: ToolRouter) -> None:
    tool_set = router.build_tool_set(
        "agent",
        get_model_capabilities("gpt-5"),
        _WEB,
        native_config=NativeToolsConfig.from_mapping({"webSearch": False}),
    )

    assert not tool_set.has_native("web_search")


def test_restricted_retrieval_disables_web_search(router: ToolRouter) -> None:
    decision = RetrievalDecision(True, WebSearchDecision(True, "medium"))
    tool_set = router.build_tool_set(
        "agent",
        get_model_capabilities("gpt-5"),
        decision,
        native_config=NativeToolsConfig().with_file_search("vs_1"),
    )

    assert not tool_set.has_native("web_search")
    assert tool_set.has_native("file_search")


def test_bad_schema_fails_before_any_session_work(executor: RecordingExecutor) -> None:
    registry = create_default_registry(executor)
    registry.register(
        ToolSpec("create_spreadsheet", "Broken", ObjectSchema({"kind": EnumSchema([])})),
        executor,
        allow_override=True,
    )

    with pytest.raises(SchemaCompilationError):
        ToolRouter(registry).build_tool_set("agent", get_model_capabilities("gpt-5"), RetrievalDecision())


# -----------------------------------------------------------------------------
# Execution
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_execute_fills_defaults_before_dispatch(router: ToolRouter, agent_tool_set, executor) -> None:
    call = ToolCall("call_1", "add_row", {"artifactId": "s1", "values": ["x", 1], "position": None})

    result = await router.execute(agent_tool_set, call, _CONTEXT)

    assert result.success is True
    assert result.payload == {"success": True, "tool": "add_row"}
    assert executor.calls == [("add_row", {"artifactId": "s1", "values": ["x", 1], "position": "append"})]


@pytest.mark.asyncio
async def test_omitted_optional_arguments_are_accepted(router: ToolRouter, agent_tool_set, executor) -> None:
    call = ToolCall("call_1", "create_spreadsheet", {"name": "Sales", "columns": ["Revenue", "Region"]})

    result = await router.execute(agent_tool_set, call, _CONTEXT)

    assert result.success is True
    assert executor.calls == [("create_spreadsheet", {"name": "Sales", "columns": ["Revenue", "Region"], "rows": None})]


@pytest.mark.asyncio
async def test_omitted_optional_argument_gets_its_default(router: ToolRouter, agent_tool_set, executor) -> None:
    call = ToolCall("call_1", "add_row", {"artifactId": "s1", "values": ["x"]})

    result = await router.execute(agent_tool_set, call, _CONTEXT)

    assert result.success is True
    assert executor.calls == [("add_row", {"artifactId": "s1", "values": ["x"], "position": "append"})]


@pytest.mark.asyncio
async def test_unknown_tool_returns_error_result(router: ToolRouter, agent_tool_set, executor) -> None:
    result = await router.execute(agent_tool_set, ToolCall("call_1", "drop_table", {}), _CONTEXT)

    assert result.success is False
    assert result.payload == {"error": "Unknown tool: drop_table"}
    assert executor.calls == []


@pytest.mark.asyncio
async def test_invalid_arguments_return_error_result(router: ToolRouter, agent_tool_set, executor) -> None:
    call = ToolCall("call_1", "insert_formula", {"artifactId": "s1", "cell": 5, "formula": "=SUM(A1:A2)"})

    result = await router.execute(agent_tool_set, call, _CONTEXT)

    assert result.success is False
    assert "Invalid arguments for insert_formula at cell" in result.payload["error"]
    assert executor.calls == []


@pytest.mark.asyncio
async def test_raw_arguments_fail_validation(router: ToolRouter, agent_tool_set) -> None:
    result = await router.execute(agent_tool_set, ToolCall("call_1", "merge_cells", {"raw": "{bad"}), _CONTEXT)

    assert result.success is False
    assert "Invalid arguments" in result.payload["error"]


@pytest.mark.asyncio
async def test_executor_exception_becomes_error_result(agent_tool_set) -> None:
    executor = RecordingExecutor({"merge_cells": RuntimeError("sheet is locked")})
    router = ToolRouter(create_default_registry(executor))
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5"), RetrievalDecision())

    result = await router.execute(tool_set, ToolCall("call_1", "merge_cells", {"artifactId": "s1", "range": "A1:B1"}), _CONTEXT)

    assert result.success is False
    assert result.payload == {"error": "sheet is locked"}


@pytest.mark.asyncio
async def test_error_payload_marks_failure() -> None:
    executor = RecordingExecutor({"get_document_content": {"error": "Document not found"}})
    router = ToolRouter(create_default_registry(executor))
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5"), RetrievalDecision())

    result = await router.execute(tool_set, ToolCall("call_1", "get_document_content", {"artifactId": "x"}), _CONTEXT)

    assert result.success is False


@pytest.mark.asyncio
async def test_async_executor_timeout() -> None:
    async def _slow(name, args, conversation_id, caller_id, context=None):
        await asyncio.sleep(1)
        return {"success": True}

    router = ToolRouter(create_default_registry(_slow), tool_timeout=0.01)
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5"), RetrievalDecision())

    result = await router.execute(tool_set, ToolCall("call_1", "get_document_content", {"artifactId": "x"}), _CONTEXT)

    assert result.success is False
    assert "timed out" in result.payload["error"]


@pytest.mark.asyncio
async def test_cancellation_propagates_from_executor() -> None:
    executor = RecordingExecutor({"get_document_content": OperationCancelledError()})
    router = ToolRouter(create_default_registry(executor))
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5"), RetrievalDecision())

    with pytest.raises(OperationCancelledError):
        await router.execute(tool_set, ToolCall("call_1", "get_document_content", {"artifactId": "x"}), _CONTEXT)


@pytest.mark.asyncio
async def test_plan_exit_tool_echoes_input(router: ToolRouter) -> None:
    tool_set = router.build_tool_set("plan", get_model_capabilities("gpt-5"), RetrievalDecision())

    result = await router.execute(tool_set, ToolCall("call_1", EXIT_PLAN_TOOL, {"plan": "1. Do it"}), _CONTEXT)

    assert result.success is True
    assert result.payload == {"plan": "1. Do it"}
