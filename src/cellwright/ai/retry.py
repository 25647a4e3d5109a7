"""Retry/timeout wrapper around a single network attempt."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_chain,
    wait_fixed,
    wait_none,
)

from .cancellation import CancellationToken, linked_token
from .errors import ErrorKind, classify_error, is_retryable

__all__ = ["RETRY_DELAYS", "AttemptFn", "SleepFn", "with_retry"]

LOGGER = logging.getLogger(__name__)

RETRY_DELAYS: tuple[float, ...] = (0.5, 1.0, 2.0)

T = TypeVar("T")
AttemptFn = Callable[[CancellationToken], Awaitable[T]]
SleepFn = Callable[[float], Awaitable[None]]


async def with_retry(
    label: str,
    parent: CancellationToken | None,
    timeout: float | None,
    attempt_fn: AttemptFn[T],
    *,
    delays: Sequence[float] = RETRY_DELAYS,
    sleep: SleepFn | None = None,
) -> T:
    """Run ``attempt_fn`` with bounded retries and a composed cancellation signal.

    Each attempt receives a token that fires when ``parent`` fires or when
    ``timeout`` seconds elapse (no timer when ``timeout`` is ``None`` or
    ``<= 0``). Only transient network, rate-limit and server errors are
    retried; the delay before retry ``n`` is ``delays[n]``.

    Args:
        label: Name used in log lines and timeout errors.
        parent: Session-level token; firing it aborts the attempt and the backoff sleep.
        timeout: Per-attempt budget in seconds.
        attempt_fn: Coroutine factory invoked once per attempt.
        delays: Fixed backoff schedule; its length is the retry budget.
        sleep: Override for the backoff sleep (tests).

    Returns:
        The first successful attempt's result.

    Raises:
        OperationCancelledError: If ``parent`` fires before or during an attempt.
        Exception: The last attempt's error when it is fatal or retries are exhausted.
    """

    delays = tuple(delays)
    if parent is not None:
        parent.raise_if_cancelled()
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(len(delays) + 1),
        wait=wait_chain(*(wait_fixed(delay) for delay in delays)) if delays else wait_none(),
        retry=retry_if_exception(is_retryable),
        sleep=sleep or _backoff_sleep(parent),
        before_sleep=_log_before_retry(label, len(delays)),
    )
    try:
        async for attempt in retrying:
            with attempt:
                if parent is not None:
                    parent.raise_if_cancelled()
                with linked_token(parent, timeout=timeout, label=label) as signal:
                    return await signal.race(attempt_fn(signal))
    except Exception as exc:
        attempts = retrying.statistics.get("attempt_number", 1)
        kind = classify_error(exc)
        if kind is ErrorKind.CANCELLED:
            LOGGER.debug("%s cancelled during attempt %s", label, attempts)
            raise
        LOGGER.error(
            "%s failed after %s attempt(s) [%s]: %s",
            label,
            attempts,
            kind.value,
            exc,
        )
        raise
    raise AssertionError("unreachable: tenacity stopped without an outcome")  # pragma: no cover


def _backoff_sleep(parent: CancellationToken | None) -> SleepFn:
    if parent is None:
        return asyncio.sleep
    return parent.sleep


def _log_before_retry(label: str, retries: int) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        outcome = state.outcome
        error = outcome.exception() if outcome is not None else None
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        LOGGER.warning(
            "%s attempt %s/%s failed (%s); retrying in %.1fs",
            label,
            state.attempt_number,
            retries + 1,
            error,
            delay,
        )

    return _log
