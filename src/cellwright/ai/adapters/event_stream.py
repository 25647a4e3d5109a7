"""Event-stream protocol adapter (OpenAI Responses API)."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

from ..cancellation import CancellationToken
from ..errors import AgentError, ServerError
from ..events import (
    Annotations,
    CodeInterpreterDelta,
    CodeInterpreterDone,
    CodeInterpreterStart,
    FileSearchDone,
    FileSearchSearching,
    FileSearchStart,
    ReasoningDelta,
    ReasoningDone,
    StreamEvent,
    TextDelta,
    ToolCallDelta,
    ToolCallDone,
    ToolCallStart,
    UsageTotals,
    WebSearchDone,
    WebSearchSearching,
    WebSearchStart,
)
from ..tools.router import ToolCall
from .base import ProviderAdapter, StepRequest, StepState, StreamTranslator, field_of, parse_tool_arguments

__all__ = ["EventStreamAdapter", "extract_web_search_details", "collect_annotations"]

LOGGER = logging.getLogger(__name__)

_WEB_ACTIONS = ("search", "open_page", "find_in_page")
_WEB_SEARCH_EVENTS = {
    "response.web_search_call.in_progress": WebSearchStart,
    "response.web_search_call.searching": WebSearchSearching,
    "response.web_search_call.completed": WebSearchDone,
}


class EventStreamAdapter(ProviderAdapter):
    """Adapter for backends streaming tagged ``response.*`` events."""

    protocol = "event-stream"

    async def _open(self, request: StepRequest, signal: CancellationToken) -> Any:
        params = self.build_params(request)
        LOGGER.debug(
            "Opening response stream: model=%s step=%s tools=%s previous_response_id=%s",
            params["model"],
            request.step_number,
            len(params.get("tools", [])),
            params.get("previous_response_id"),
        )
        return await self.client.responses.create(**params, timeout=request.timeout)

    def _translator(self, request: StepRequest, state: StepState) -> StreamTranslator:
        return _ResponsesTranslator(request, state)

    # ------------------------------------------------------------------
    # Request assembly
    # ------------------------------------------------------------------

    def build_params(self, request: StepRequest) -> dict[str, Any]:
        config = self._config
        params: dict[str, Any] = {
            "model": config.model,
            "input": self._build_input(request),
            "instructions": request.instructions,
            "stream": True,
            "store": config.provider == "openai",
        }
        if request.previous_response_id:
            params["previous_response_id"] = request.previous_response_id

        tools, tool_choice = self._build_tools(request)
        if tools:
            params["tools"] = tools
            params["tool_choice"] = tool_choice
            params["parallel_tool_calls"] = True

        if request.reasoning is not None:
            reasoning: dict[str, Any] = {"effort": request.reasoning.effort}
            if request.reasoning.summary:
                reasoning["summary"] = request.reasoning.summary
            params["reasoning"] = reasoning

        if config.provider == "openai":
            opt = request.optimization
            params["truncation"] = opt.truncation
            params["prompt_cache_key"] = opt.prompt_cache_key or request.conversation_id
            if opt.prompt_cache_retention:
                params["prompt_cache_retention"] = opt.prompt_cache_retention
            if opt.max_output_tokens:
                params["max_output_tokens"] = opt.max_output_tokens
            if opt.use_flex:
                params["service_tier"] = "flex"
        return params

    def _build_input(self, request: StepRequest) -> list[dict[str, Any]]:
        exchanges = list(request.exchanges)
        if request.step_number > 1 and request.previous_response_id and exchanges:
            return _function_outputs(exchanges[-1])

        items: list[dict[str, Any]] = [
            {"role": message["role"], "content": message["content"]} for message in request.history
        ]
        if request.images:
            content: Any = [{"type": "input_text", "text": request.prompt}]
            content.extend({"type": "input_image", "image_url": url} for url in request.images)
        else:
            content = request.prompt
        items.append({"role": "user", "content": content})
        for exchange in exchanges:
            for call in exchange.calls:
                items.append(
                    {
                        "type": "function_call",
                        "call_id": call.call_id,
                        "name": call.name,
                        "arguments": json.dumps(dict(call.arguments)),
                    }
                )
            items.extend(_function_outputs(exchange))
        return items

    def _build_tools(self, request: StepRequest) -> tuple[list[dict[str, Any]], Any]:
        tool_set = request.tool_set
        tools: list[dict[str, Any]] = [tool.to_responses_tool() for tool in tool_set.functions]
        native = [dict(tool) for tool in tool_set.native]
        if self._config.provider == "chatgpt-plus":
            native = [tool for tool in native if tool.get("type") == "web_search"]

        tool_choice: Any = "auto"
        force_file_search = (
            request.step_number == 1
            and tool_set.decision.force_restricted_retrieval
            and any(tool.get("type") == "file_search" for tool in native)
        )
        if force_file_search:
            native = [tool for tool in native if not str(tool.get("type", "")).startswith("web_search")]
            tool_choice = {"type": "file_search"}
            LOGGER.info("Forcing file_search on step 1 for conversation %s", request.conversation_id)
        tools.extend(native)
        return tools, tool_choice


def _function_outputs(exchange: Any) -> list[dict[str, Any]]:
    return [
        {"type": "function_call_output", "call_id": result.call_id, "output": result.to_output()}
        for result in exchange.results
    ]


# -----------------------------------------------------------------------------
# Event translation
# -----------------------------------------------------------------------------


def extract_web_search_details(event: Any) -> dict[str, Any]:
    """Pull ``action``, ``query``, ``domains`` and ``url`` from a web search event or item."""

    action_value = field_of(event, "action")
    action_obj = action_value if action_value is not None and not isinstance(action_value, str) else None
    if isinstance(action_value, str) and action_value in _WEB_ACTIONS:
        action = action_value
    else:
        kind = field_of(action_obj, "type")
        action = kind if kind in _WEB_ACTIONS else None

    queries = field_of(action_obj, "queries") or field_of(event, "queries")
    query = field_of(action_obj, "query") or field_of(event, "query")
    if not isinstance(query, str):
        query = queries[0] if isinstance(queries, (list, tuple)) and queries else None
    domains = field_of(action_obj, "domains") or field_of(event, "domains") or ()
    url = field_of(action_obj, "url") or field_of(event, "url")
    return {
        "action": action,
        "query": query,
        "domains": tuple(domains) if isinstance(domains, (list, tuple)) else (),
        "url": url if isinstance(url, str) else None,
    }


def collect_annotations(content_parts: Iterable[Any]) -> list[dict[str, Any]]:
    """Normalize URL and file citations attached to message content parts."""

    annotations: list[dict[str, Any]] = []
    for part in content_parts or ():
        for annotation in field_of(part, "annotations") or ():
            kind = field_of(annotation, "type")
            if kind == "url_citation":
                annotations.append(
                    {
                        "type": "url_citation",
                        "url": field_of(annotation, "url", ""),
                        "title": field_of(annotation, "title"),
                        "start_index": field_of(annotation, "start_index", 0),
                        "end_index": field_of(annotation, "end_index", 0),
                    }
                )
            elif kind == "file_citation":
                annotations.append(
                    {
                        "type": "file_citation",
                        "file_id": field_of(annotation, "file_id"),
                        "filename": field_of(annotation, "filename"),
                        "index": field_of(annotation, "index", 0),
                    }
                )
    return annotations


class _ResponsesTranslator(StreamTranslator):
    def __init__(self, request: StepRequest, state: StepState) -> None:
        super().__init__(request, state)
        self._call_ids: dict[str, str] = {}
        self._started: set[str] = set()
        self._code: dict[str, str] = {}
        self._annotations_seen = False
        self._final_response: Any = None

    def feed(self, chunk: Any) -> Iterable[StreamEvent]:
        kind = field_of(chunk, "type", "")
        if kind == "response.created":
            response_id = field_of(field_of(chunk, "response"), "id")
            if response_id:
                self.state.response_id = response_id
        elif kind == "response.output_text.delta":
            delta = field_of(chunk, "delta", "")
            if delta:
                self.state.text += delta
                yield TextDelta(delta)
        elif kind == "response.reasoning_summary_text.delta":
            delta = field_of(chunk, "delta", "")
            if delta:
                self.state.reasoning += delta
                yield ReasoningDelta(delta, field_of(chunk, "summary_index", 0))
        elif kind == "response.reasoning_summary_text.done":
            yield ReasoningDone(field_of(chunk, "text", ""), field_of(chunk, "summary_index", 0))
        elif kind == "response.output_item.added":
            yield from self._item_added(field_of(chunk, "item"))
        elif kind == "response.function_call_arguments.delta":
            call_id = self._call_ids.get(field_of(chunk, "item_id", ""))
            delta = field_of(chunk, "delta", "")
            if call_id and delta:
                yield ToolCallDelta(call_id, delta)
        elif kind == "response.output_item.done":
            yield from self._item_done(field_of(chunk, "item"))
        elif kind in _WEB_SEARCH_EVENTS:
            event_type = _WEB_SEARCH_EVENTS[kind]
            yield event_type(field_of(chunk, "item_id", ""), **extract_web_search_details(chunk))
        elif kind == "response.code_interpreter_call.in_progress":
            yield CodeInterpreterStart(field_of(chunk, "item_id", ""))
        elif kind == "response.code_interpreter_call_code.delta":
            item_id = field_of(chunk, "item_id", "")
            delta = field_of(chunk, "delta", "")
            self._code[item_id] = self._code.get(item_id, "") + delta
            yield CodeInterpreterDelta(item_id, delta)
        elif kind == "response.code_interpreter_call_code.done":
            self._code[field_of(chunk, "item_id", "")] = field_of(chunk, "code", "")
        elif kind == "response.code_interpreter_call.completed":
            item_id = field_of(chunk, "item_id", "")
            yield CodeInterpreterDone(item_id, code=self._code.pop(item_id, None), output="")
        elif kind == "response.file_search_call.in_progress":
            yield FileSearchStart(field_of(chunk, "item_id", ""))
        elif kind == "response.file_search_call.searching":
            yield FileSearchSearching(field_of(chunk, "item_id", ""))
        elif kind == "response.file_search_call.completed":
            results = field_of(chunk, "results") or ()
            yield FileSearchDone(field_of(chunk, "item_id", ""), tuple(_plain(result) for result in results))
        elif kind in ("response.completed", "response.incomplete"):
            self._final_response = field_of(chunk, "response")
            if kind == "response.incomplete":
                LOGGER.warning("Response %s ended incomplete", self.state.response_id)
        elif kind in ("error", "response.failed"):
            raise _stream_error(chunk)

    def _item_added(self, item: Any) -> Iterable[StreamEvent]:
        if field_of(item, "type") != "function_call":
            return
        call_id = field_of(item, "call_id") or field_of(item, "id", "")
        item_id = field_of(item, "id")
        if item_id:
            self._call_ids[item_id] = call_id
        self._started.add(call_id)
        yield ToolCallStart(call_id, field_of(item, "name", "tool"))

    def _item_done(self, item: Any) -> Iterable[StreamEvent]:
        item_type = field_of(item, "type")
        if item_type == "function_call":
            call_id = field_of(item, "call_id") or field_of(item, "id", "")
            name = field_of(item, "name", "tool")
            if call_id not in self._started:
                self._started.add(call_id)
                yield ToolCallStart(call_id, name)
            args = parse_tool_arguments(field_of(item, "arguments", ""))
            self.state.tool_calls.append(ToolCall(call_id, name, args))
            yield ToolCallDone(call_id, name, args)
        elif item_type == "message":
            annotations = collect_annotations(field_of(item, "content") or ())
            if annotations:
                self._annotations_seen = True
                yield Annotations(tuple(annotations))

    def finish(self) -> Iterable[StreamEvent]:
        response = self._final_response
        if response is None:
            LOGGER.debug("Stream ended without a completed response object")
            return
        if not self.state.response_id:
            self.state.response_id = field_of(response, "id")
        usage = field_of(response, "usage")
        if usage is not None:
            details = field_of(usage, "output_tokens_details")
            self.state.usage = UsageTotals.from_counts(
                field_of(usage, "input_tokens", 0),
                field_of(usage, "output_tokens", 0),
                field_of(details, "reasoning_tokens", 0),
            )
        if self._annotations_seen:
            return
        annotations: list[dict[str, Any]] = []
        for item in field_of(response, "output") or ():
            if field_of(item, "type") == "message":
                annotations.extend(collect_annotations(field_of(item, "content") or ()))
        if annotations:
            LOGGER.debug("Recovered %d citations from the final response", len(annotations))
            yield Annotations(tuple(annotations))


def _plain(value: Any) -> Mapping[str, Any]:
    dump = getattr(value, "model_dump", None)
    if callable(dump):
        return dump()
    if isinstance(value, Mapping):
        return dict(value)
    return dict(vars(value)) if hasattr(value, "__dict__") else {"value": value}


def _stream_error(chunk: Any) -> AgentError:
    error = field_of(field_of(chunk, "response"), "error") or chunk
    message = field_of(error, "message") or "The model backend reported an error"
    code = field_of(error, "code")
    return ServerError(f"{code}: {message}" if code else message)
