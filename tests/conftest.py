"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from cellwright.ai.models import get_model_capabilities
from cellwright.ai.tools.registry import create_default_registry
from cellwright.ai.tools.router import ToolRouter
from cellwright.ai.tools.selector import RetrievalDecision

from helpers import RecordingExecutor


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def router(executor: RecordingExecutor) -> ToolRouter:
    return ToolRouter(create_default_registry(executor), tool_timeout=5.0)


@pytest.fixture
def agent_tool_set(router: ToolRouter):
    return router.build_tool_set(
        "agent", get_model_capabilities("gpt-5-mini"), RetrievalDecision(), provider="openai"
    )
