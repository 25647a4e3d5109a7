"""Utility helpers shared across the Cellwright package."""

from .logging import (
    ConversationFilter,
    conversation_context,
    current_conversation,
    get_log_path,
    setup_from_settings,
    setup_logging,
)

__all__ = [
    "ConversationFilter",
    "conversation_context",
    "current_conversation",
    "get_log_path",
    "setup_from_settings",
    "setup_logging",
]
