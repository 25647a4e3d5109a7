"""Logging bootstrap for the Cellwright agent runtime.

Records are tagged with the conversation they belong to. The agent service
enters :func:`conversation_context` for every session it drives; because the
id lives in a :class:`contextvars.ContextVar`, each asyncio task sees its own
conversation and concurrent sessions stay distinguishable in one log file.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Iterator

__all__ = [
    "ConversationFilter",
    "conversation_context",
    "current_conversation",
    "setup_logging",
    "setup_from_settings",
    "get_log_path",
]

_DEFAULT_LOG_DIR = Path.home() / ".cellwright" / "logs"
_LOG_DIR_ENV = "CELLWRIGHT_LOG_DIR"
_LOG_FILE_NAME = "cellwright.log"
_NO_CONVERSATION = "-"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(conversation)s | %(name)s | %(message)s"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_conversation: contextvars.ContextVar[str] = contextvars.ContextVar(
    "cellwright_conversation", default=_NO_CONVERSATION
)
_LOG_PATH: Path | None = None


class ConversationFilter(logging.Filter):
    """Stamp ``record.conversation`` with the active conversation id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "conversation"):
            record.conversation = _conversation.get()
        return True


@contextlib.contextmanager
def conversation_context(conversation_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block with ``conversation_id``."""

    token = _conversation.set(conversation_id or _NO_CONVERSATION)
    try:
        yield
    finally:
        _conversation.reset(token)


def current_conversation() -> str:
    return _conversation.get()


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install the rotating file handler and, optionally, a stderr console handler.

    Repeated calls keep the first configuration unless ``force`` is set.
    Returns the log file path.
    """

    global _LOG_PATH
    if _LOG_PATH is not None and not force:
        return _LOG_PATH

    target_dir = Path(log_dir or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / _LOG_FILE_NAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    conversation_filter = ConversationFilter()
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    ]
    if console:
        # stdout carries the CLI's JSON-lines event stream
        handlers.append(logging.StreamHandler())
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(conversation_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet_level = max(level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(quiet_level)

    _LOG_PATH = log_path
    return log_path


def setup_from_settings(debug_logging: bool, *, debug: bool = False, force: bool = False) -> Path:
    """Configure logging at ``DEBUG`` when either the CLI flag or the persisted setting asks for it."""

    return setup_logging(logging.DEBUG if debug or debug_logging else logging.INFO, force=force)


def get_log_path() -> Path | None:
    """Return the configured log file, or ``None`` before :func:`setup_logging` runs."""

    return _LOG_PATH
