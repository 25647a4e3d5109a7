"""Shared test helpers and fake provider clients.

The fakes mimic just enough of ``AsyncOpenAI`` for the adapters: an endpoint
object whose ``create`` pops the next scripted stream (or raises the next
scripted exception), and async-iterable streams of plain dict chunks.

Example:
    from helpers import FakeStream, make_client, response_created, text_delta

    client = make_client(responses=[FakeStream([response_created("r1"), text_delta("hi")])])
"""

from __future__ import annotations

import asyncio
import random
from types import SimpleNamespace
from typing import Any, Iterable, Mapping, Sequence

from cellwright.ai.client import ProviderConfig
from cellwright.ai.tools.schema import (
    ArraySchema,
    BooleanSchema,
    EnumSchema,
    IntegerSchema,
    NullSchema,
    NumberSchema,
    ObjectSchema,
    OptionalSchema,
    SchemaNode,
    StringSchema,
    UnionSchema,
)
from cellwright.ai.tools.types import ToolContext


# -----------------------------------------------------------------------------
# Streams and clients
# -----------------------------------------------------------------------------


class FakeStream:
    """Async iterator over scripted chunks.

    ``hang_at`` blocks the read at that index until the read is cancelled;
    ``error`` is raised once the chunks are exhausted.
    """

    def __init__(
        self,
        chunks: Iterable[Any],
        *,
        error: BaseException | None = None,
        hang_at: int | None = None,
    ) -> None:
        self._chunks = list(chunks)
        self._error = error
        self._hang_at = hang_at
        self._index = 0
        self.closed = False
        self.reached_hang = asyncio.Event()

    def __aiter__(self) -> "FakeStream":
        return self

    async def __anext__(self) -> Any:
        if self._hang_at is not None and self._index == self._hang_at:
            self.reached_hang.set()
            await asyncio.Event().wait()
        if self._index >= len(self._chunks):
            if self._error is not None:
                raise self._error
            raise StopAsyncIteration
        chunk = self._chunks[self._index]
        self._index += 1
        return chunk

    async def close(self) -> None:
        self.closed = True


class ScriptedEndpoint:
    """Stand-in for ``client.responses`` or ``client.chat.completions``."""

    def __init__(self, script: Iterable[Any] = ()) -> None:
        self.script = list(script)
        self.calls: list[dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        if not self.script:
            raise AssertionError("create() called more often than scripted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def make_client(*, responses: Iterable[Any] = (), completions: Iterable[Any] = ()) -> SimpleNamespace:
    client = SimpleNamespace(
        responses=ScriptedEndpoint(responses),
        chat=SimpleNamespace(completions=ScriptedEndpoint(completions)),
        closed=False,
    )

    async def close() -> None:
        client.closed = True

    client.close = close
    return client


def provider_config(
    provider: str = "openai",
    *,
    protocol: str = "event-stream",
    model: str = "gpt-5-mini",
) -> ProviderConfig:
    return ProviderConfig(
        provider=provider,
        protocol=protocol,  # type: ignore[arg-type]
        model=model,
        base_url="https://llm.example.invalid/v1",
        api_key="sk-test-key",
    )


class StatusError(Exception):
    """Exception carrying an HTTP status, like SDK status errors."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class RecordingExecutor:
    """Tool executor that records calls and echoes a success payload."""

    def __init__(self, responses: Mapping[str, Any] | None = None) -> None:
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self._responses = dict(responses or {})

    def __call__(
        self,
        name: str,
        args: Mapping[str, Any],
        conversation_id: str,
        caller_id: str,
        context: ToolContext | None = None,
    ) -> Any:
        self.calls.append((name, dict(args)))
        response = self._responses.get(name)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(args)
        if response is not None:
            return response
        return {"success": True, "tool": name}


# -----------------------------------------------------------------------------
# Event-stream chunks
# -----------------------------------------------------------------------------


def response_created(response_id: str) -> dict[str, Any]:
    return {"type": "response.created", "response": {"id": response_id}}


def text_delta(text: str) -> dict[str, Any]:
    return {"type": "response.output_text.delta", "delta": text}


def function_call_done(call_id: str, name: str, arguments: str) -> dict[str, Any]:
    return {
        "type": "response.output_item.done",
        "item": {"type": "function_call", "id": f"fc_{call_id}", "call_id": call_id, "name": name, "arguments": arguments},
    }


def response_completed(
    response_id: str,
    *,
    input_tokens: int = 10,
    output_tokens: int = 5,
    reasoning_tokens: int = 0,
    output: Sequence[Any] = (),
) -> dict[str, Any]:
    return {
        "type": "response.completed",
        "response": {
            "id": response_id,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "output_tokens_details": {"reasoning_tokens": reasoning_tokens},
            },
            "output": list(output),
        },
    }


def text_stream(response_id: str, *parts: str, **usage: int) -> FakeStream:
    chunks = [response_created(response_id)]
    chunks.extend(text_delta(part) for part in parts)
    chunks.append(response_completed(response_id, **usage))
    return FakeStream(chunks)


def tool_stream(response_id: str, *calls: tuple[str, str, str], text: str = "", **usage: int) -> FakeStream:
    chunks = [response_created(response_id)]
    if text:
        chunks.append(text_delta(text))
    chunks.extend(function_call_done(call_id, name, arguments) for call_id, name, arguments in calls)
    chunks.append(response_completed(response_id, **usage))
    return FakeStream(chunks)


# -----------------------------------------------------------------------------
# Delta-chunk chunks
# -----------------------------------------------------------------------------


def chat_chunk(
    *,
    content: str | None = None,
    reasoning: str | None = None,
    tool_calls: Sequence[Mapping[str, Any]] | None = None,
    chunk_id: str = "chatcmpl-1",
    usage: Mapping[str, Any] | None = None,
    web_search: Sequence[Mapping[str, Any]] | None = None,
) -> dict[str, Any]:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    if tool_calls is not None:
        delta["tool_calls"] = list(tool_calls)
    chunk: dict[str, Any] = {"id": chunk_id, "choices": [{"index": 0, "delta": delta}] if delta else []}
    if usage is not None:
        chunk["usage"] = dict(usage)
    if web_search is not None:
        chunk["web_search"] = list(web_search)
    return chunk


def tool_fragment(index: int, *, call_id: str | None = None, name: str | None = None, arguments: str | None = None) -> dict[str, Any]:
    fragment: dict[str, Any] = {"index": index, "function": {}}
    if call_id is not None:
        fragment["id"] = call_id
    if name is not None:
        fragment["function"]["name"] = name
    if arguments is not None:
        fragment["function"]["arguments"] = arguments
    return fragment


# -----------------------------------------------------------------------------
# Random schema shapes
# -----------------------------------------------------------------------------

_PRIMITIVES = (StringSchema, NumberSchema, IntegerSchema, BooleanSchema)


def random_schema(rng: random.Random, depth: int = 0) -> SchemaNode:
    """Build a random declarative schema; the root is always an object."""

    if depth == 0:
        return _random_object(rng, depth)
    roll = rng.random()
    if depth >= 3 or roll < 0.35:
        return rng.choice(_PRIMITIVES)(description=rng.choice(["", "a value"]))
    if roll < 0.45:
        return EnumSchema([f"v{index}" for index in range(rng.randint(1, 4))])
    if roll < 0.6:
        return ArraySchema(random_schema(rng, depth + 1))
    if roll < 0.75:
        return OptionalSchema(random_schema(rng, depth + 1), description=rng.choice(["", "optional"]))
    if roll < 0.88:
        options = [rng.choice(_PRIMITIVES + (NullSchema,))() for _ in range(rng.randint(1, 3))]
        if rng.random() < 0.4:
            options.append(_random_object(rng, depth + 1))
        return UnionSchema(options)
    return _random_object(rng, depth + 1)


def _random_object(rng: random.Random, depth: int) -> ObjectSchema:
    count = rng.randint(0 if depth else 1, 4)
    return ObjectSchema({f"field_{index}": random_schema(rng, depth + 1) for index in range(count)})


def example_for(node: SchemaNode, rng: random.Random) -> Any:
    """Produce a value that a strict validator of ``node`` accepts."""

    if isinstance(node, StringSchema):
        return "text"
    if isinstance(node, IntegerSchema):
        return rng.randint(-5, 5)
    if isinstance(node, NumberSchema):
        return rng.choice([1.5, 0, -2])
    if isinstance(node, BooleanSchema):
        return rng.random() < 0.5
    if isinstance(node, NullSchema):
        return None
    if isinstance(node, EnumSchema):
        return rng.choice(list(node.values))
    if isinstance(node, ArraySchema):
        return [example_for(node.items, rng) for _ in range(rng.randint(0, 2))]
    if isinstance(node, OptionalSchema):
        return None if rng.random() < 0.5 else example_for(node.inner, rng)
    if isinstance(node, UnionSchema):
        return example_for(rng.choice(list(node.options)), rng)
    if isinstance(node, ObjectSchema):
        return {name: example_for(child, rng) for name, child in node.properties.items()}
    raise TypeError(f"unexpected node {node!r}")
