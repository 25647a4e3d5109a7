"""Step loop controller: the state machine driving one agent session.

Each step streams one model round trip through the provider adapter,
forwarding canonical events to the sink as they arrive, then fans out any
requested tool calls concurrently and feeds their results into the next step.
The loop ends when a step produces no tool calls or the step ceiling is hit.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..adapters.base import (
    OptimizationConfig,
    ProviderAdapter,
    ReasoningConfig,
    StepExchange,
    StepRequest,
    StepState,
)
from ..errors import OperationCancelledError, classify_error, sanitize_error_message
from ..events import ErrorEvent, Finish, StepComplete, StreamEvent, TextDone, ToolResultEvent, UsageTotals
from ..tools.router import ToolCall, ToolRouter, ToolSet
from ..tools.types import ToolContext, ToolResult
from .sessions import Session

__all__ = [
    "MAX_AGENT_STEPS",
    "EventSink",
    "LoopState",
    "LoopConfig",
    "AgentTurn",
    "LoopOutcome",
    "StepLoopController",
]

LOGGER = logging.getLogger(__name__)

MAX_AGENT_STEPS = 15

EventSink = Callable[[StreamEvent], "Awaitable[None] | None"]


class LoopState(str, enum.Enum):
    INIT = "init"
    CALL_MODEL = "call_model"
    STREAMING = "streaming"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


# -----------------------------------------------------------------------------
# Configuration and inputs
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class LoopConfig:
    """Controller limits.

    Attributes:
        max_steps: Step ceiling; ``finish.total_steps`` never exceeds it.
        request_timeout: Per-attempt budget for opening a model stream.
        flex_request_timeout: Budget used instead when the flex tier is requested.
    """

    max_steps: int = MAX_AGENT_STEPS
    request_timeout: float = 120.0
    flex_request_timeout: float = 900.0


@dataclass(slots=True, frozen=True)
class AgentTurn:
    """Inputs fixed at session start."""

    conversation_id: str
    caller_id: str
    prompt: str
    instructions: str
    tool_set: ToolSet
    history: Sequence[Mapping[str, Any]] = ()
    images: Sequence[str] = ()
    reasoning: ReasoningConfig | None = None
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    previous_response_id: str | None = None


@dataclass(slots=True)
class LoopOutcome:
    state: LoopState
    total_steps: int = 0
    text: str = ""
    reasoning: str = ""
    usage: UsageTotals = field(default_factory=UsageTotals)
    response_id: str | None = None
    error: str | None = None


class _Emitter:
    """Forward events to the sink until the session's token fires."""

    def __init__(self, sink: EventSink, session: Session) -> None:
        self._sink = sink
        self._session = session
        self.suppressed = 0

    async def __call__(self, event: StreamEvent) -> None:
        if self._session.token.cancelled:
            self.suppressed += 1
            return
        outcome = self._sink(event)
        if inspect.isawaitable(outcome):
            await outcome


# -----------------------------------------------------------------------------
# Controller
# -----------------------------------------------------------------------------


class StepLoopController:
    """Drive steps for one session until completion, cancellation or failure."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        router: ToolRouter,
        *,
        config: LoopConfig | None = None,
    ) -> None:
        self._adapter = adapter
        self._router = router
        self._config = config or LoopConfig()

    @property
    def config(self) -> LoopConfig:
        return self._config

    async def run(self, session: Session, turn: AgentTurn, sink: EventSink) -> LoopOutcome:
        """Run the loop to a terminal state.

        Cancellation through the session token ends the loop silently. Any other
        error is sanitized and reported as a single ``error`` event.

        Args:
            session: The registered session whose token governs cancellation.
            turn: Prompt, history and tool set for this session.
            sink: Receiver for canonical events; may be sync or async.

        Returns:
            The terminal :class:`LoopOutcome`.
        """

        emit = _Emitter(sink, session)
        outcome = LoopOutcome(LoopState.INIT)
        started = time.perf_counter()
        try:
            await self._loop(session, turn, emit, outcome)
        except OperationCancelledError:
            outcome.state = LoopState.CANCELLED
        except asyncio.CancelledError:
            outcome.state = LoopState.CANCELLED
            LOGGER.info("Session task for %s was cancelled externally", turn.conversation_id)
            raise
        except Exception as exc:
            if session.token.cancelled:
                outcome.state = LoopState.CANCELLED
                LOGGER.debug("Error after cancellation ignored for %s: %s", turn.conversation_id, exc)
            else:
                outcome.state = LoopState.FAILED
                outcome.error = sanitize_error_message(exc)
                LOGGER.error(
                    "Session %s failed at step %d [%s]: %s",
                    turn.conversation_id,
                    outcome.total_steps,
                    classify_error(exc).value,
                    outcome.error,
                )
                await emit(ErrorEvent(outcome.error))
        finally:
            LOGGER.info(
                "Session %s ended %s after %d step(s) in %.0fms (suppressed %d events)",
                turn.conversation_id,
                outcome.state.value,
                outcome.total_steps,
                (time.perf_counter() - started) * 1000,
                emit.suppressed,
            )
        return outcome

    async def _loop(self, session: Session, turn: AgentTurn, emit: _Emitter, outcome: LoopOutcome) -> None:
        token = session.token
        max_steps = max(1, self._config.max_steps)
        timeout = self._config.flex_request_timeout if turn.optimization.use_flex else self._config.request_timeout
        context = ToolContext(turn.conversation_id, turn.caller_id, cancellation=token)
        exchanges: list[StepExchange] = []
        response_id = turn.previous_response_id
        step = 0

        while step < max_steps:
            token.raise_if_cancelled()
            step += 1
            outcome.total_steps = step
            outcome.state = LoopState.CALL_MODEL
            request = StepRequest(
                step_number=step,
                conversation_id=turn.conversation_id,
                prompt=turn.prompt,
                instructions=turn.instructions,
                tool_set=turn.tool_set,
                history=turn.history,
                exchanges=tuple(exchanges),
                previous_response_id=response_id,
                images=turn.images if step == 1 else (),
                reasoning=turn.reasoning,
                optimization=turn.optimization,
                timeout=timeout,
            )
            state = StepState()
            step_started = time.perf_counter()
            LOGGER.debug("Session %s step %d: calling model", turn.conversation_id, step)

            async with contextlib.aclosing(self._adapter.stream(request, token, state)) as events:
                outcome.state = LoopState.STREAMING
                async for event in events:
                    await emit(event)

            outcome.usage = outcome.usage + state.usage
            outcome.text += state.text
            outcome.reasoning += state.reasoning
            response_id = state.response_id or response_id
            outcome.response_id = response_id
            LOGGER.info(
                "Session %s step %d streamed in %.0fms: %d chars, %d tool call(s)",
                turn.conversation_id,
                step,
                (time.perf_counter() - step_started) * 1000,
                len(state.text),
                len(state.tool_calls),
            )

            if not state.tool_calls:
                await emit(StepComplete(step, False))
                break

            outcome.state = LoopState.EXECUTING_TOOLS
            results = await self._execute_tools(turn.tool_set, state.tool_calls, context, session, emit)
            exchanges.append(StepExchange(tuple(state.tool_calls), tuple(results), state.text))
            has_more = step < max_steps
            if not has_more:
                LOGGER.warning(
                    "Session %s reached the step ceiling (%d) with tool results pending",
                    turn.conversation_id,
                    max_steps,
                )
            await emit(StepComplete(step, has_more))

        outcome.state = LoopState.DONE
        await emit(TextDone(outcome.text))
        await emit(Finish(outcome.usage, step))

    async def _execute_tools(
        self,
        tool_set: ToolSet,
        calls: Sequence[ToolCall],
        context: ToolContext,
        session: Session,
        emit: _Emitter,
    ) -> list[ToolResult]:
        LOGGER.debug("Executing %d tool call(s) concurrently", len(calls))

        async def _run(call: ToolCall) -> ToolResult:
            result = await self._router.execute(tool_set, call, context)
            await emit(ToolResultEvent(call.call_id, call.name, result.payload, result.success))
            return result

        results = await session.token.race(asyncio.gather(*(_run(call) for call in calls)))
        return list(results)
