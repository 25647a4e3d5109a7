"""Provider stream adapters normalizing backend protocols to canonical events."""

from __future__ import annotations

from typing import Any

from ..client import ProviderConfig
from .base import (
    OptimizationConfig,
    ProviderAdapter,
    ReasoningConfig,
    StepExchange,
    StepRequest,
    StepState,
    parse_tool_arguments,
)
from .delta_chunk import DeltaChunkAdapter
from .event_stream import EventStreamAdapter

__all__ = [
    "DeltaChunkAdapter",
    "EventStreamAdapter",
    "OptimizationConfig",
    "ProviderAdapter",
    "ReasoningConfig",
    "StepExchange",
    "StepRequest",
    "StepState",
    "create_adapter",
    "parse_tool_arguments",
]

_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    EventStreamAdapter.protocol: EventStreamAdapter,
    DeltaChunkAdapter.protocol: DeltaChunkAdapter,
}


def create_adapter(config: ProviderConfig, **kwargs: Any) -> ProviderAdapter:
    """Instantiate the adapter matching ``config.protocol``."""

    try:
        adapter_cls = _ADAPTERS[config.protocol]
    except KeyError:
        raise ValueError(f"Unsupported protocol '{config.protocol}'") from None
    return adapter_cls(config, **kwargs)
