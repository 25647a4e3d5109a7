"""Provider adapter interface shared by both streaming protocols."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, ClassVar, Iterable, Literal, Mapping, Sequence

from openai import AsyncOpenAI

from ..cancellation import CancellationToken
from ..client import ProviderConfig, build_async_client
from ..events import StreamEvent, UsageTotals
from ..retry import RETRY_DELAYS, SleepFn, with_retry
from ..tools.router import ToolCall, ToolSet
from ..tools.types import ToolResult

__all__ = [
    "ReasoningConfig",
    "OptimizationConfig",
    "StepExchange",
    "StepRequest",
    "StepState",
    "StreamTranslator",
    "ProviderAdapter",
    "parse_tool_arguments",
    "field_of",
]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ReasoningConfig:
    effort: Literal["none", "minimal", "low", "medium", "high"] = "medium"
    summary: Literal["auto", "concise", "detailed"] | None = "auto"


@dataclass(slots=True, frozen=True)
class OptimizationConfig:
    """Request tuning honoured by the event-stream protocol."""

    max_output_tokens: int | None = None
    truncation: Literal["auto", "disabled"] = "auto"
    prompt_cache_key: str | None = None
    prompt_cache_retention: str | None = None
    use_flex: bool = False


@dataclass(slots=True, frozen=True)
class StepExchange:
    """Tool calls a finished step produced, with their results."""

    calls: tuple[ToolCall, ...]
    results: tuple[ToolResult, ...]
    text: str = ""


@dataclass(slots=True, frozen=True)
class StepRequest:
    """Everything an adapter needs to issue one model round trip."""

    step_number: int
    conversation_id: str
    prompt: str
    instructions: str
    tool_set: ToolSet
    history: Sequence[Mapping[str, Any]] = ()
    exchanges: Sequence[StepExchange] = ()
    previous_response_id: str | None = None
    images: Sequence[str] = ()
    reasoning: ReasoningConfig | None = None
    optimization: OptimizationConfig = field(default_factory=OptimizationConfig)
    timeout: float | None = 120.0


@dataclass(slots=True)
class StepState:
    """Accumulated output of one step, filled in while the stream is consumed."""

    text: str = ""
    reasoning: str = ""
    usage: UsageTotals = field(default_factory=UsageTotals)
    response_id: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Parse streamed argument JSON; malformed input degrades to ``{"raw": text}``."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if raw is None:
        return {}
    text = str(raw)
    if not text.strip():
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        LOGGER.debug("Tool arguments are not valid JSON; passing raw text through")
        return {"raw": text}
    if isinstance(parsed, dict):
        return parsed
    return {"raw": text}


def field_of(obj: Any, name: str, default: Any = None) -> Any:
    """Read ``name`` from an SDK model, plain object or mapping."""

    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    value = getattr(obj, name, None)
    if value is None:
        extra = getattr(obj, "model_extra", None)
        if isinstance(extra, Mapping):
            value = extra.get(name)
    return default if value is None else value


class StreamTranslator(ABC):
    """Per-step stateful translation from raw chunks to canonical events."""

    def __init__(self, request: StepRequest, state: StepState) -> None:
        self.request = request
        self.state = state

    @abstractmethod
    def feed(self, chunk: Any) -> Iterable[StreamEvent]:
        ...

    @abstractmethod
    def finish(self) -> Iterable[StreamEvent]:
        ...


class ProviderAdapter(ABC):
    """Strategy turning one backend protocol into canonical events.

    Subclasses implement :meth:`_open` (a single network attempt returning
    the raw stream) and :meth:`_translator`. :meth:`stream` wraps the open in
    the retry wrapper, then forwards each translated event as soon as its
    chunk arrives.
    """

    protocol: ClassVar[str]

    def __init__(
        self,
        config: ProviderConfig,
        *,
        client: AsyncOpenAI | None = None,
        retry_delays: Sequence[float] = RETRY_DELAYS,
        retry_sleep: SleepFn | None = None,
    ) -> None:
        self._config = config
        self._client = client
        self._retry_delays = tuple(retry_delays)
        self._retry_sleep = retry_sleep

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_async_client(self._config)
        return self._client

    async def stream(
        self,
        request: StepRequest,
        token: CancellationToken,
        state: StepState,
    ) -> AsyncIterator[StreamEvent]:
        """Yield canonical events for one step, updating ``state`` as it goes."""

        label = f"{self._config.provider}:{self._config.model} step {request.step_number}"
        raw = await with_retry(
            label,
            token,
            request.timeout,
            lambda signal: self._open(request, signal),
            delays=self._retry_delays,
            sleep=self._retry_sleep,
        )
        translator = self._translator(request, state)
        try:
            async for chunk in token.iterate(raw):
                for event in translator.feed(chunk):
                    yield event
            for event in translator.finish():
                yield event
        finally:
            await _close_stream(raw)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()

    @abstractmethod
    async def _open(self, request: StepRequest, signal: CancellationToken) -> Any:
        ...

    @abstractmethod
    def _translator(self, request: StepRequest, state: StepState) -> StreamTranslator:
        ...


async def _close_stream(raw: Any) -> None:
    close = getattr(raw, "close", None)
    if close is None:
        return
    try:
        result = close()
        if hasattr(result, "__await__"):
            await result
    except Exception:  # pragma: no cover - close failures are not actionable
        LOGGER.debug("Failed to close provider stream", exc_info=True)
