"""Delta-chunk protocol adapter (chat-completions style streaming)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlparse

from ..cancellation import CancellationToken
from ..events import (
    Annotations,
    ReasoningDelta,
    ReasoningDone,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallDone,
    ToolCallStart,
    UsageTotals,
    WebSearchDone,
    WebSearchStart,
)
from ..tools.router import ToolCall
from .base import ProviderAdapter, StepRequest, StepState, StreamTranslator, field_of, parse_tool_arguments

__all__ = ["DeltaChunkAdapter", "search_results_to_annotations", "domains_from_urls"]

LOGGER = logging.getLogger(__name__)

_REASONING_FIELDS = ("reasoning", "reasoning_summary", "reasoning_content")


class DeltaChunkAdapter(ProviderAdapter):
    """Adapter for OpenAI-compatible ``chat.completions`` streams."""

    protocol = "delta-chunk"

    async def _open(self, request: StepRequest, signal: CancellationToken) -> Any:
        params = self.build_params(request)
        LOGGER.debug(
            "Opening chat stream: model=%s step=%s messages=%s tools=%s",
            params["model"],
            request.step_number,
            len(params["messages"]),
            len(params.get("tools", [])),
        )
        return await self.client.chat.completions.create(**params, timeout=request.timeout)

    def _translator(self, request: StepRequest, state: StepState) -> StreamTranslator:
        return _ChatTranslator(request, state)

    def build_params(self, request: StepRequest) -> dict[str, Any]:
        params: dict[str, Any] = {
            "model": self._config.model,
            "messages": self._build_messages(request),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        tools = self._build_tools(request)
        if tools:
            params["tools"] = tools
            params["tool_choice"] = "auto"
        return params

    def _build_messages(self, request: StepRequest) -> list[dict[str, Any]]:
        if request.images:
            LOGGER.warning("%s does not support image inputs; ignoring %d image(s)", self._config.provider, len(request.images))
        messages: list[dict[str, Any]] = []
        if request.instructions:
            messages.append({"role": "system", "content": request.instructions})
        messages.extend({"role": item["role"], "content": item["content"]} for item in request.history)
        messages.append({"role": "user", "content": request.prompt})
        for exchange in request.exchanges:
            messages.append(
                {
                    "role": "assistant",
                    "content": exchange.text or None,
                    "tool_calls": [
                        {
                            "id": call.call_id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": json.dumps(dict(call.arguments))},
                        }
                        for call in exchange.calls
                    ],
                }
            )
            messages.extend(
                {"role": "tool", "tool_call_id": result.call_id, "content": result.to_output()}
                for result in exchange.results
            )
        return messages

    def _build_tools(self, request: StepRequest) -> list[dict[str, Any]]:
        tool_set = request.tool_set
        native = [dict(tool) for tool in tool_set.native] if self._config.provider == "zai" else []
        # with search on, function tools are withheld so the model answers through search
        web_search_mode = any(tool.get("type") == "web_search" for tool in native)
        functions = [] if web_search_mode else [tool.to_chat_tool() for tool in tool_set.functions]
        if web_search_mode:
            LOGGER.info("Web search mode: withholding %d function tools", len(tool_set.functions))
        return functions + native


@dataclass(slots=True)
class _PendingCall:
    call_id: str
    name: str
    arguments: str = ""


def domains_from_urls(urls: Iterable[str]) -> tuple[str, ...]:
    domains: list[str] = []
    for url in urls:
        host = urlparse(url).hostname
        if host and host not in domains:
            domains.append(host)
    return tuple(domains)


def search_results_to_annotations(results: Iterable[Any]) -> list[dict[str, Any]]:
    annotations = []
    for result in results:
        url = field_of(result, "link") or field_of(result, "url")
        if not url:
            continue
        annotations.append(
            {
                "type": "url_citation",
                "url": url,
                "title": field_of(result, "title") or field_of(result, "media"),
                "start_index": 0,
                "end_index": 0,
            }
        )
    return annotations


class _ChatTranslator(StreamTranslator):
    def __init__(self, request: StepRequest, state: StepState) -> None:
        super().__init__(request, state)
        self._calls: list[_PendingCall] = []
        self._by_index: dict[int, _PendingCall] = {}
        self._by_id: dict[str, _PendingCall] = {}
        self._search_results: list[Any] = []
        self._step_reasoning = ""

    def feed(self, chunk: Any) -> Iterable[StreamEvent]:
        usage = field_of(chunk, "usage")
        if usage is not None:
            details = field_of(usage, "completion_tokens_details")
            self.state.usage = UsageTotals.from_counts(
                field_of(usage, "prompt_tokens", 0),
                field_of(usage, "completion_tokens", 0),
                field_of(details, "reasoning_tokens", 0),
            )
        web_search = field_of(chunk, "web_search")
        if isinstance(web_search, list) and not self._search_results:
            self._search_results = list(web_search)

        choices = field_of(chunk, "choices") or ()
        delta = field_of(choices[0], "delta") if choices else None
        if delta is None:
            return

        content = field_of(delta, "content")
        if content:
            self.state.text += content
            yield TextDelta(content)

        for name in _REASONING_FIELDS:
            reasoning = field_of(delta, name)
            if isinstance(reasoning, str) and reasoning:
                self.state.reasoning += reasoning
                self._step_reasoning += reasoning
                yield ReasoningDelta(reasoning, 0)
                break

        for fragment in field_of(delta, "tool_calls") or ():
            yield from self._accumulate(field_of(chunk, "id", "chunk"), fragment)

    def _accumulate(self, chunk_id: str, fragment: Any) -> Iterable[StreamEvent]:
        index = field_of(fragment, "index")
        if not isinstance(index, int):
            index = None
        fragment_id = field_of(fragment, "id")
        function = field_of(fragment, "function")
        name = field_of(function, "name")

        pending = self._by_index.get(index) if index is not None else None
        if pending is None and fragment_id:
            pending = self._by_id.get(fragment_id)
        if pending is None and index is None and not fragment_id and self._calls:
            # unaddressed fragments continue the most recent call
            pending = self._calls[-1]
        if pending is None:
            slot = index if index is not None else len(self._calls)
            pending = _PendingCall(fragment_id or f"{chunk_id}-{slot}", name or "tool")
            self._calls.append(pending)
            yield ToolCallStart(pending.call_id, pending.name)
        elif name and pending.name == "tool":
            pending.name = name
        elif name and name != pending.name:
            LOGGER.debug("Ignoring rename of call %s from %s to %s", pending.call_id, pending.name, name)
        if index is not None:
            self._by_index.setdefault(index, pending)
        if fragment_id:
            self._by_id.setdefault(fragment_id, pending)

        arguments = field_of(function, "arguments")
        if arguments:
            pending.arguments += arguments
            yield ToolCallDelta(pending.call_id, arguments)

    def finish(self) -> Iterable[StreamEvent]:
        if self._step_reasoning:
            yield ReasoningDone(self._step_reasoning, 0)
        for pending in self._calls:
            args = parse_tool_arguments(pending.arguments)
            self.state.tool_calls.append(ToolCall(pending.call_id, pending.name, args))
            yield ToolCallDone(pending.call_id, pending.name, args)

        annotations = search_results_to_annotations(self._search_results)
        if annotations and not self._calls:
            search_id = f"web-{self.request.conversation_id}-{self.request.step_number}"
            urls = [annotation["url"] for annotation in annotations]
            yield WebSearchStart(search_id, action="search", query=self.request.prompt)
            yield WebSearchDone(
                search_id, action="search", query=self.request.prompt, domains=domains_from_urls(urls)
            )
            yield Annotations(tuple(annotations))
