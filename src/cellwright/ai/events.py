"""Canonical stream events emitted to the UI sink.

Every provider adapter normalizes its backend's incremental output into the
variants below. Each variant carries a ``type`` tag matching the wire name the
UI consumes (``text-delta``, ``tool-result`` ...); :meth:`StreamEvent.to_dict`
renders the tagged mapping.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Mapping, Sequence

__all__ = [
    "UsageTotals",
    "StreamEvent",
    "TextDelta",
    "TextDone",
    "ReasoningDelta",
    "ReasoningDone",
    "ToolCallStart",
    "ToolCallDelta",
    "ToolCallDone",
    "ToolResultEvent",
    "WebSearchStart",
    "WebSearchSearching",
    "WebSearchDone",
    "FileSearchStart",
    "FileSearchSearching",
    "FileSearchDone",
    "CodeInterpreterStart",
    "CodeInterpreterDelta",
    "CodeInterpreterDone",
    "Annotations",
    "StepComplete",
    "Finish",
    "ErrorEvent",
]


@dataclass(slots=True, frozen=True)
class UsageTotals:
    """Token counters accumulated additively across the steps of a session."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    reasoning_tokens: int = 0

    def __add__(self, other: "UsageTotals") -> "UsageTotals":
        if not isinstance(other, UsageTotals):
            return NotImplemented
        return UsageTotals(
            prompt_tokens=self.prompt_tokens + max(0, other.prompt_tokens),
            completion_tokens=self.completion_tokens + max(0, other.completion_tokens),
            reasoning_tokens=self.reasoning_tokens + max(0, other.reasoning_tokens),
        )

    @classmethod
    def from_counts(cls, prompt: Any = 0, completion: Any = 0, reasoning: Any = 0) -> "UsageTotals":
        return cls(_as_count(prompt), _as_count(completion), _as_count(reasoning))


def _as_count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


@dataclass(slots=True, frozen=True)
class StreamEvent:
    type: ClassVar[str] = "event"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type}
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, UsageTotals):
                value = asdict(value)
            payload[item.name] = value
        return payload


# -----------------------------------------------------------------------------
# Text and reasoning
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class TextDelta(StreamEvent):
    type: ClassVar[str] = "text-delta"
    delta: str


@dataclass(slots=True, frozen=True)
class TextDone(StreamEvent):
    type: ClassVar[str] = "text-done"
    text: str


@dataclass(slots=True, frozen=True)
class ReasoningDelta(StreamEvent):
    type: ClassVar[str] = "reasoning-delta"
    delta: str
    summary_index: int = 0


@dataclass(slots=True, frozen=True)
class ReasoningDone(StreamEvent):
    type: ClassVar[str] = "reasoning-done"
    text: str
    summary_index: int = 0


# -----------------------------------------------------------------------------
# Function tool calls
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class ToolCallStart(StreamEvent):
    type: ClassVar[str] = "tool-call-start"
    call_id: str
    name: str


@dataclass(slots=True, frozen=True)
class ToolCallDelta(StreamEvent):
    type: ClassVar[str] = "tool-call-delta"
    call_id: str
    args_delta: str


@dataclass(slots=True, frozen=True)
class ToolCallDone(StreamEvent):
    type: ClassVar[str] = "tool-call-done"
    call_id: str
    name: str
    args: Mapping[str, Any]


@dataclass(slots=True, frozen=True)
class ToolResultEvent(StreamEvent):
    type: ClassVar[str] = "tool-result"
    call_id: str
    name: str
    result: Any
    success: bool


# -----------------------------------------------------------------------------
# Native capabilities
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class WebSearchStart(StreamEvent):
    type: ClassVar[str] = "web-search-start"
    search_id: str
    action: str | None = None
    query: str | None = None
    domains: Sequence[str] = field(default_factory=tuple)
    url: str | None = None


@dataclass(slots=True, frozen=True)
class WebSearchSearching(StreamEvent):
    type: ClassVar[str] = "web-search-searching"
    search_id: str
    action: str | None = None
    query: str | None = None
    domains: Sequence[str] = field(default_factory=tuple)
    url: str | None = None


@dataclass(slots=True, frozen=True)
class WebSearchDone(StreamEvent):
    type: ClassVar[str] = "web-search-done"
    search_id: str
    action: str | None = None
    query: str | None = None
    domains: Sequence[str] = field(default_factory=tuple)
    url: str | None = None


@dataclass(slots=True, frozen=True)
class FileSearchStart(StreamEvent):
    type: ClassVar[str] = "file-search-start"
    search_id: str


@dataclass(slots=True, frozen=True)
class FileSearchSearching(StreamEvent):
    type: ClassVar[str] = "file-search-searching"
    search_id: str


@dataclass(slots=True, frozen=True)
class FileSearchDone(StreamEvent):
    type: ClassVar[str] = "file-search-done"
    search_id: str
    results: Sequence[Mapping[str, Any]] = field(default_factory=tuple)


@dataclass(slots=True, frozen=True)
class CodeInterpreterStart(StreamEvent):
    type: ClassVar[str] = "code-interpreter-start"
    execution_id: str


@dataclass(slots=True, frozen=True)
class CodeInterpreterDelta(StreamEvent):
    type: ClassVar[str] = "code-interpreter-delta"
    execution_id: str
    delta: str


@dataclass(slots=True, frozen=True)
class CodeInterpreterDone(StreamEvent):
    type: ClassVar[str] = "code-interpreter-done"
    execution_id: str
    code: str | None = None
    output: str | None = None


@dataclass(slots=True, frozen=True)
class Annotations(StreamEvent):
    type: ClassVar[str] = "annotations"
    annotations: Sequence[Mapping[str, Any]]


# -----------------------------------------------------------------------------
# Loop lifecycle
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class StepComplete(StreamEvent):
    type: ClassVar[str] = "step-complete"
    step_number: int
    has_more_steps: bool


@dataclass(slots=True, frozen=True)
class Finish(StreamEvent):
    type: ClassVar[str] = "finish"
    usage: UsageTotals
    total_steps: int


@dataclass(slots=True, frozen=True)
class ErrorEvent(StreamEvent):
    type: ClassVar[str] = "error"
    message: str
