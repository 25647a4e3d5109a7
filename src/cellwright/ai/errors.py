"""Error taxonomy, retry classification and user-facing message sanitizing."""

from __future__ import annotations

import asyncio
import errno
import re
import socket
from enum import Enum
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError

__all__ = [
    "ErrorKind",
    "AgentError",
    "NetworkTransientError",
    "RequestTimeoutError",
    "RateLimitedError",
    "BillingError",
    "ServerError",
    "ClientRequestError",
    "ToolExecutionError",
    "OperationCancelledError",
    "SchemaCompilationError",
    "AccessDeniedError",
    "UnknownProviderError",
    "classify_error",
    "is_retryable",
    "is_billing_message",
    "sanitize_error_message",
]


class ErrorKind(str, Enum):
    NETWORK_TRANSIENT = "network_transient"
    RATE_LIMITED = "rate_limited"
    BILLING = "billing"
    SERVER_ERROR = "server_error"
    CLIENT_ERROR = "client_error"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


_RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK_TRANSIENT, ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR})


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class AgentError(Exception):
    """Base class for errors raised by the orchestration core."""

    kind: ErrorKind = ErrorKind.UNKNOWN


class NetworkTransientError(AgentError):
    """Timeouts, connection resets and DNS failures."""

    kind = ErrorKind.NETWORK_TRANSIENT


class RequestTimeoutError(NetworkTransientError):
    """Raised when a single attempt exceeds its time budget."""

    def __init__(self, label: str, timeout: float) -> None:
        self.label = label
        self.timeout = timeout
        super().__init__(f"{label} timed out after {timeout:g}s")


class RateLimitedError(AgentError):
    kind = ErrorKind.RATE_LIMITED


class BillingError(AgentError):
    """Rate-limit style failure caused by an exhausted balance or quota."""

    kind = ErrorKind.BILLING


class ServerError(AgentError):
    kind = ErrorKind.SERVER_ERROR


class ClientRequestError(AgentError):
    kind = ErrorKind.CLIENT_ERROR


class ToolExecutionError(AgentError):
    """Raised when a tool executor fails; isolated to that call's result."""

    def __init__(self, message: str, *, tool_name: str | None = None, cause: BaseException | None = None) -> None:
        self.tool_name = tool_name
        self.cause = cause
        super().__init__(message)


class OperationCancelledError(AgentError):
    """The session's cancellation handle fired."""

    kind = ErrorKind.CANCELLED

    def __init__(self, message: str = "Request cancelled") -> None:
        super().__init__(message)


class SchemaCompilationError(AgentError):
    """A declarative tool schema cannot be lowered to strict JSON Schema."""

    def __init__(self, message: str, *, path: str = "$") -> None:
        self.path = path
        super().__init__(f"{path}: {message}")


class AccessDeniedError(AgentError):
    kind = ErrorKind.CLIENT_ERROR

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__("Chat not found or access denied")


class UnknownProviderError(AgentError):
    kind = ErrorKind.CLIENT_ERROR

    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Unknown provider '{provider}'")


# -----------------------------------------------------------------------------
# Classification
# -----------------------------------------------------------------------------

_BILLING_PATTERN = re.compile(r"insufficient\s+balance|no\s+resource\s+package|quota\s+exceeded", re.IGNORECASE)
_TRANSIENT_MESSAGE_PATTERN = re.compile(
    r"error\s+occurred\s+while\s+processing|internal\s+server\s+error|bad\s+gateway|service\s+unavailable",
    re.IGNORECASE,
)
_TRANSIENT_CODES = frozenset(
    {"ETIMEDOUT", "ECONNRESET", "EPIPE", "ENOTFOUND", "ECONNREFUSED", "EAI_AGAIN", "EHOSTUNREACH"}
)
_TRANSIENT_ERRNOS = frozenset(
    getattr(errno, name) for name in ("ETIMEDOUT", "ECONNRESET", "EPIPE", "ECONNREFUSED", "EHOSTUNREACH") if hasattr(errno, name)
)
_SERVER_ERROR_TYPES = frozenset({"server_error", "api_error", "service_unavailable"})


def is_billing_message(message: str | None) -> bool:
    return bool(message and _BILLING_PATTERN.search(message))


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised by an attempt to an :class:`ErrorKind`."""

    if isinstance(exc, AgentError):
        return exc.kind
    if isinstance(exc, asyncio.CancelledError):
        return ErrorKind.CANCELLED
    if isinstance(exc, (APITimeoutError, APIConnectionError, httpx.TimeoutException, httpx.NetworkError)):
        return ErrorKind.NETWORK_TRANSIENT
    if isinstance(exc, socket.gaierror):
        return ErrorKind.NETWORK_TRANSIENT
    if isinstance(exc, (TimeoutError, ConnectionError)):
        return ErrorKind.NETWORK_TRANSIENT
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return ErrorKind.NETWORK_TRANSIENT

    message = str(exc)
    status = _status_of(exc)
    if status is not None:
        if status == 429:
            return ErrorKind.BILLING if is_billing_message(message) else ErrorKind.RATE_LIMITED
        if status >= 500:
            return ErrorKind.SERVER_ERROR
        if status >= 400:
            return ErrorKind.CLIENT_ERROR

    code = getattr(exc, "code", None)
    if isinstance(code, str) and code.upper() in _TRANSIENT_CODES:
        return ErrorKind.NETWORK_TRANSIENT
    error_type = getattr(exc, "type", None)
    if isinstance(error_type, str) and error_type in _SERVER_ERROR_TYPES:
        return ErrorKind.SERVER_ERROR
    if _TRANSIENT_MESSAGE_PATTERN.search(message):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    return classify_error(exc) in _RETRYABLE_KINDS


def _status_of(exc: BaseException) -> int | None:
    if isinstance(exc, APIStatusError):
        return exc.status_code
    for attr in ("status_code", "status"):
        value: Any = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


# -----------------------------------------------------------------------------
# Sanitizing
# -----------------------------------------------------------------------------

_API_KEY_PATTERN = re.compile(r"sk-[a-zA-Z0-9_-]{20,}")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]{12,}", re.IGNORECASE)
_QUOTA_PATTERN = re.compile(r"quota\s+exceeded", re.IGNORECASE)
_RATE_LIMIT_PATTERN = re.compile(r"429|rate\s+limit", re.IGNORECASE)

BILLING_MESSAGE = (
    "Insufficient balance or no active resource package for this provider. "
    "Top up your account or switch to another model."
)
QUOTA_MESSAGE = "API quota exceeded. Check your plan limits or switch to another model."
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please wait a moment and try again."


def sanitize_error_message(error: BaseException | str) -> str:
    """Return a user-facing message with credentials stripped and billing errors reworded."""

    message = error if isinstance(error, str) else (str(error) or type(error).__name__)
    message = _API_KEY_PATTERN.sub("[REDACTED_API_KEY]", message)
    message = _BEARER_PATTERN.sub(r"\1[REDACTED_TOKEN]", message)
    if re.search(r"insufficient\s+balance|no\s+resource\s+package", message, re.IGNORECASE):
        return BILLING_MESSAGE
    if _QUOTA_PATTERN.search(message):
        return QUOTA_MESSAGE
    if _RATE_LIMIT_PATTERN.search(message):
        return RATE_LIMIT_MESSAGE
    return message
