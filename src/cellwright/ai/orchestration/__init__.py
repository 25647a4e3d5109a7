"""Session lifecycle, the step loop, and the inbound agent service."""

from .controller import (
    MAX_AGENT_STEPS,
    AgentTurn,
    EventSink,
    LoopConfig,
    LoopOutcome,
    LoopState,
    StepLoopController,
)
from .prompts import AGENT_SYSTEM_PROMPT, PLAN_SYSTEM_PROMPT, build_instructions
from .service import AgentService, ChatRequest, KnowledgeBase, KnowledgeBaseLookup, OwnershipCheck
from .sessions import Session, SessionRegistry

__all__ = [
    "AGENT_SYSTEM_PROMPT",
    "MAX_AGENT_STEPS",
    "PLAN_SYSTEM_PROMPT",
    "AgentService",
    "AgentTurn",
    "ChatRequest",
    "EventSink",
    "KnowledgeBase",
    "KnowledgeBaseLookup",
    "LoopConfig",
    "LoopOutcome",
    "LoopState",
    "OwnershipCheck",
    "Session",
    "SessionRegistry",
    "StepLoopController",
    "build_instructions",
]
