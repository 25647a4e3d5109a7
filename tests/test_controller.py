"""Tests for the step loop controller."""

from __future__ import annotations

import asyncio
import json

import pytest

from cellwright.ai.adapters import EventStreamAdapter
from cellwright.ai.events import (
    ErrorEvent,
    Finish,
    StepComplete,
    TextDone,
    ToolCallDone,
    ToolResultEvent,
)
from cellwright.ai.models import get_model_capabilities
from cellwright.ai.orchestration.controller import AgentTurn, LoopConfig, LoopState, StepLoopController
from cellwright.ai.orchestration.sessions import SessionRegistry
from cellwright.ai.tools.registry import create_default_registry
from cellwright.ai.tools.router import ToolRouter
from cellwright.ai.tools.selector import RetrievalDecision

from helpers import (
    FakeStream,
    RecordingExecutor,
    StatusError,
    make_client,
    no_sleep,
    provider_config,
    response_created,
    text_delta,
    text_stream,
    tool_stream,
)

_SALES_ARGS = json.dumps({"name": "Sales", "columns": ["Month", "Revenue"], "rows": None})


def _controller(client, router: ToolRouter, *, max_steps: int = 15) -> StepLoopController:
    adapter = EventStreamAdapter(provider_config(), client=client, retry_sleep=no_sleep)
    return StepLoopController(adapter, router, config=LoopConfig(max_steps=max_steps))


def _turn(tool_set, prompt: str = "Create a sales table") -> AgentTurn:
    return AgentTurn("chat-1", "user-1", prompt, "Be helpful.", tool_set)


@pytest.mark.asyncio
async def test_sales_table_round_trip(router: ToolRouter, agent_tool_set, executor) -> None:
    client = make_client(
        responses=[
            tool_stream("resp_1", ("call_1", "create_spreadsheet", _SALES_ARGS), text="Creating. "),
            text_stream("resp_2", "Done."),
        ]
    )
    session = SessionRegistry().register("chat-1")
    events = []

    outcome = await _controller(client, router).run(session, _turn(agent_tool_set), events.append)

    assert outcome.state is LoopState.DONE
    assert [event.type for event in events] == [
        "text-delta",
        "tool-call-start",
        "tool-call-done",
        "tool-result",
        "step-complete",
        "text-delta",
        "step-complete",
        "text-done",
        "finish",
    ]
    assert [(e.step_number, e.has_more_steps) for e in events if isinstance(e, StepComplete)] == [(1, True), (2, False)]
    assert events[-2] == TextDone("Creating. Done.")
    finish = events[-1]
    assert isinstance(finish, Finish)
    assert finish.total_steps == 2
    assert (finish.usage.prompt_tokens, finish.usage.completion_tokens) == (20, 10)
    assert executor.calls == [("create_spreadsheet", {"name": "Sales", "columns": ["Month", "Revenue"], "rows": None})]
    second = client.responses.calls[1]
    assert second["previous_response_id"] == "resp_1"
    assert [item["type"] for item in second["input"]] == ["function_call_output"]


@pytest.mark.asyncio
async def test_step_ceiling_stops_the_loop(router: ToolRouter, agent_tool_set, executor) -> None:
    summary = json.dumps({"artifactId": "s1", "maxRows": None})
    streams = [
        tool_stream(
            f"resp_{step}",
            (f"call_{step}_a", "get_spreadsheet_summary", summary),
            (f"call_{step}_b", "get_document_content", json.dumps({"artifactId": "d1"})),
        )
        for step in range(1, 17)
    ]
    client = make_client(responses=streams)
    session = SessionRegistry().register("chat-1")
    events = []

    outcome = await _controller(client, router).run(session, _turn(agent_tool_set), events.append)

    assert outcome.state is LoopState.DONE
    assert len(client.responses.calls) == 15
    steps = [event for event in events if isinstance(event, StepComplete)]
    assert len(steps) == 15
    assert steps[-1].has_more_steps is False
    assert all(step.has_more_steps for step in steps[:-1])
    calls = [event for event in events if isinstance(event, ToolCallDone)]
    results = [event for event in events if isinstance(event, ToolResultEvent)]
    assert len(calls) == len(results) == 30
    assert {event.call_id for event in calls} == {event.call_id for event in results}
    assert events[-1].total_steps == 15
    assert len(executor.calls) == 30
    assert executor.calls[0] == ("get_spreadsheet_summary", {"artifactId": "s1", "maxRows": 10})


@pytest.mark.asyncio
async def test_cancel_during_streaming_stops_events(router: ToolRouter, agent_tool_set) -> None:
    stream = FakeStream([response_created("resp_1"), text_delta("Partial")], hang_at=2)
    client = make_client(responses=[stream])
    registry = SessionRegistry()
    session = registry.register("chat-1")
    events = []

    task = asyncio.create_task(_controller(client, router).run(session, _turn(agent_tool_set), events.append))
    await stream.reached_hang.wait()
    assert registry.cancel("chat-1") is True
    outcome = await task

    assert outcome.state is LoopState.CANCELLED
    assert [event.type for event in events] == ["text-delta"]
    assert stream.closed is True


@pytest.mark.asyncio
async def test_cancel_during_tool_execution(agent_tool_set) -> None:
    started = asyncio.Event()

    async def _blocking(name, args, conversation_id, caller_id, context=None):
        started.set()
        await asyncio.Event().wait()

    router = ToolRouter(create_default_registry(_blocking))
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5-mini"), RetrievalDecision())
    client = make_client(
        responses=[tool_stream("resp_1", ("call_1", "get_document_content", json.dumps({"artifactId": "d1"})))]
    )
    session = SessionRegistry().register("chat-1")
    events = []

    task = asyncio.create_task(_controller(client, router).run(session, _turn(tool_set), events.append))
    await started.wait()
    session.token.cancel()
    outcome = await task

    assert outcome.state is LoopState.CANCELLED
    assert not any(isinstance(event, (ToolResultEvent, ErrorEvent, Finish)) for event in events)
    assert len(client.responses.calls) == 1


@pytest.mark.asyncio
async def test_fatal_error_emits_single_sanitized_event(router: ToolRouter, agent_tool_set) -> None:
    client = make_client(responses=[StatusError(401, "Incorrect API key provided: sk-abcdefghijklmnopqrstuvwxyz")])
    session = SessionRegistry().register("chat-1")
    events = []

    outcome = await _controller(client, router).run(session, _turn(agent_tool_set), events.append)

    assert outcome.state is LoopState.FAILED
    assert len(events) == 1
    assert isinstance(events[0], ErrorEvent)
    assert "sk-abcdefghijklmnopqrstuvwxyz" not in events[0].message
    assert "[REDACTED_API_KEY]" in events[0].message
    assert len(client.responses.calls) == 1


@pytest.mark.asyncio
async def test_billing_error_is_reworded(router: ToolRouter, agent_tool_set) -> None:
    client = make_client(responses=[StatusError(429, "Insufficient balance or no resource package")])
    session = SessionRegistry().register("chat-1")
    events = []

    await _controller(client, router).run(session, _turn(agent_tool_set), events.append)

    assert len(client.responses.calls) == 1
    assert events[0].message.startswith("Insufficient balance")


@pytest.mark.asyncio
async def test_tool_failures_do_not_abort_the_session(agent_tool_set) -> None:
    executor = RecordingExecutor({"get_document_content": RuntimeError("disk full")})
    router = ToolRouter(create_default_registry(executor))
    tool_set = router.build_tool_set("agent", get_model_capabilities("gpt-5-mini"), RetrievalDecision())
    client = make_client(
        responses=[
            tool_stream("resp_1", ("call_1", "get_document_content", json.dumps({"artifactId": "d1"}))),
            text_stream("resp_2", "That document could not be read."),
        ]
    )
    session = SessionRegistry().register("chat-1")
    events = []

    outcome = await _controller(client, router).run(session, _turn(tool_set), events.append)

    assert outcome.state is LoopState.DONE
    result = next(event for event in events if isinstance(event, ToolResultEvent))
    assert result.success is False
    assert result.result == {"error": "disk full"}
    assert json.loads(client.responses.calls[1]["input"][0]["output"]) == {"error": "disk full"}


@pytest.mark.asyncio
async def test_async_sink_is_awaited(router: ToolRouter, agent_tool_set) -> None:
    client = make_client(responses=[text_stream("resp_1", "Hi")])
    session = SessionRegistry().register("chat-1")
    received = []

    async def _sink(event) -> None:
        await asyncio.sleep(0)
        received.append(event.type)

    await _controller(client, router).run(session, _turn(agent_tool_set), _sink)

    assert received == ["text-delta", "step-complete", "text-done", "finish"]
