"""Tool schemas, registry, retrieval selector and router."""

from .catalog import DOCUMENT_TOOLS, EXIT_PLAN_TOOL, PLAN_TOOLS, SPREADSHEET_TOOLS, agent_tool_specs
from .native import NativeToolsConfig, build_native_tools
from .registry import ToolRegistry, create_default_registry
from .router import AgentMode, ToolCall, ToolRouter, ToolSet
from .schema import compile_parameters, compile_schema
from .selector import RetrievalDecision, WebSearchDecision, decide
from .types import CompiledTool, ToolContext, ToolExecutorFn, ToolResult, ToolSpec

__all__ = [
    "AgentMode",
    "CompiledTool",
    "DOCUMENT_TOOLS",
    "EXIT_PLAN_TOOL",
    "NativeToolsConfig",
    "PLAN_TOOLS",
    "RetrievalDecision",
    "SPREADSHEET_TOOLS",
    "ToolCall",
    "ToolContext",
    "ToolExecutorFn",
    "ToolRegistry",
    "ToolResult",
    "ToolRouter",
    "ToolSet",
    "ToolSpec",
    "WebSearchDecision",
    "agent_tool_specs",
    "build_native_tools",
    "compile_parameters",
    "compile_schema",
    "create_default_registry",
    "decide",
]
