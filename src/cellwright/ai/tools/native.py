"""Provider-native capability tools (web search, code interpreter, file search)."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Literal, Mapping, Sequence

from ..models import ModelCapabilities

__all__ = [
    "ContextSize",
    "WebSearchConfig",
    "CodeInterpreterConfig",
    "FileSearchConfig",
    "NativeToolsConfig",
    "build_native_tools",
    "native_tool_names",
    "ZAI_SEARCH_COUNTS",
]

LOGGER = logging.getLogger(__name__)

ContextSize = Literal["low", "medium", "high"]
_CONTEXT_SIZES = ("low", "medium", "high")
ZAI_SEARCH_COUNTS: Mapping[str, int] = {"low": 3, "medium": 5, "high": 8}


@dataclass(slots=True, frozen=True)
class WebSearchConfig:
    search_context_size: ContextSize = "medium"


@dataclass(slots=True, frozen=True)
class CodeInterpreterConfig:
    container_type: str | None = None


@dataclass(slots=True, frozen=True)
class FileSearchConfig:
    vector_store_ids: Sequence[str] = field(default_factory=tuple)
    max_results: int | None = None


@dataclass(slots=True, frozen=True)
class NativeToolsConfig:
    """Requested native capabilities; ``None`` means not requested.

    ``web_search_disabled`` records an explicit opt-out that the retrieval
    heuristic must not override.
    """

    web_search: WebSearchConfig | None = None
    code_interpreter: CodeInterpreterConfig | None = None
    file_search: FileSearchConfig | None = None
    web_search_disabled: bool = False

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "NativeToolsConfig":
        """Parse the inbound ``nativeToolsConfig`` shape (bools or option objects)."""

        if not payload:
            return cls()
        web = payload.get("web_search", payload.get("webSearch"))
        code = payload.get("code_interpreter", payload.get("codeInterpreter"))
        files = payload.get("file_search", payload.get("fileSearch"))

        web_config: WebSearchConfig | None = None
        if isinstance(web, Mapping):
            size = web.get("search_context_size", web.get("searchContextSize", "medium"))
            web_config = WebSearchConfig(size if size in _CONTEXT_SIZES else "medium")
        elif web is True:
            web_config = WebSearchConfig()

        code_config: CodeInterpreterConfig | None = None
        if isinstance(code, Mapping):
            code_config = CodeInterpreterConfig(code.get("container_type", code.get("containerType")))
        elif code is True:
            code_config = CodeInterpreterConfig()

        file_config: FileSearchConfig | None = None
        if isinstance(files, Mapping):
            ids = files.get("vector_store_ids", files.get("vectorStoreIds")) or ()
            file_config = FileSearchConfig(tuple(ids), files.get("max_results", files.get("maxResults")))
        elif files is True:
            file_config = FileSearchConfig()

        return cls(web_config, code_config, file_config, web_search_disabled=web is False)

    def with_web_search(self, context_size: ContextSize | None) -> "NativeToolsConfig":
        if context_size is None:
            return replace(self, web_search=None)
        return replace(self, web_search=WebSearchConfig(context_size))

    def with_file_search(self, vector_store_id: str, max_results: int = 10) -> "NativeToolsConfig":
        return replace(self, file_search=FileSearchConfig((vector_store_id,), max_results))


def build_native_tools(
    provider: str,
    capabilities: ModelCapabilities,
    config: NativeToolsConfig,
) -> list[dict[str, Any]]:
    """Render requested native tools in the provider's wire format.

    Capabilities the model does not declare are dropped silently; file search
    is skipped when no vector store ids are configured.
    """

    tools: list[dict[str, Any]] = []
    if config.web_search is not None and capabilities.supports_web_search:
        size = config.web_search.search_context_size
        if provider == "zai":
            tools.append(
                {
                    "type": "web_search",
                    "web_search": {
                        "enable": "True",
                        "search_engine": "search-prime",
                        "search_result": "True",
                        "count": str(ZAI_SEARCH_COUNTS[size]),
                        "search_recency_filter": "noLimit",
                        "content_size": size,
                    },
                }
            )
        elif provider == "chatgpt-plus":
            tools.append({"type": "web_search", "search_context_size": size})
        else:
            tools.append({"type": "web_search_preview", "search_context_size": size})

    if config.code_interpreter is not None and capabilities.supports_code_exec:
        tool: dict[str, Any] = {"type": "code_interpreter"}
        tool["container"] = {"type": config.code_interpreter.container_type or "auto"}
        tools.append(tool)

    if config.file_search is not None and capabilities.supports_file_search:
        ids = list(config.file_search.vector_store_ids)
        if ids:
            tool = {"type": "file_search", "vector_store_ids": ids}
            if config.file_search.max_results:
                tool["max_num_results"] = config.file_search.max_results
            tools.append(tool)
        else:
            LOGGER.warning("file_search requested without vector store ids; skipping tool")
    return tools


def native_tool_names(tools: Sequence[Mapping[str, Any]]) -> list[str]:
    names = []
    for tool in tools:
        kind = str(tool.get("type", ""))
        names.append("web_search" if kind.startswith("web_search") else kind)
    return names
