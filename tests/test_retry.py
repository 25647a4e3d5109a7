"""Tests for the retry/timeout wrapper."""

from __future__ import annotations

import asyncio

import pytest

from cellwright.ai.cancellation import CancellationToken
from cellwright.ai.errors import (
    ClientRequestError,
    OperationCancelledError,
    RequestTimeoutError,
)
from cellwright.ai.retry import RETRY_DELAYS, with_retry

from helpers import SleepRecorder, StatusError


class _Attempts:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.count = 0
        self.signals: list[CancellationToken] = []

    async def __call__(self, signal: CancellationToken):
        self.count += 1
        self.signals.append(signal)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.mark.asyncio
async def test_returns_first_success_without_sleeping() -> None:
    attempts = _Attempts("stream")
    sleeper = SleepRecorder()

    result = await with_retry("test", CancellationToken(), 5.0, attempts, sleep=sleeper)

    assert result == "stream"
    assert attempts.count == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_insufficient_balance_is_not_retried() -> None:
    attempts = _Attempts(StatusError(429, "Insufficient balance or no resource package"))
    sleeper = SleepRecorder()

    with pytest.raises(StatusError):
        await with_retry("test", CancellationToken(), 5.0, attempts, sleep=sleeper)

    assert attempts.count == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
async def test_service_unavailable_exhausts_the_schedule() -> None:
    attempts = _Attempts(*(StatusError(503, "Service Unavailable") for _ in range(4)))
    sleeper = SleepRecorder()

    with pytest.raises(StatusError):
        await with_retry("test", CancellationToken(), 5.0, attempts, sleep=sleeper)

    assert attempts.count == 4
    assert sleeper.delays == list(RETRY_DELAYS)
    assert RETRY_DELAYS == (0.5, 1.0, 2.0)


@pytest.mark.asyncio
async def test_rate_limit_then_success() -> None:
    attempts = _Attempts(StatusError(429, "Too many requests"), "stream")
    sleeper = SleepRecorder()

    result = await with_retry("test", CancellationToken(), 5.0, attempts, sleep=sleeper)

    assert result == "stream"
    assert attempts.count == 2
    assert sleeper.delays == [0.5]


@pytest.mark.asyncio
async def test_client_errors_are_fatal() -> None:
    attempts = _Attempts(ClientRequestError("bad request"))

    with pytest.raises(ClientRequestError):
        await with_retry("test", None, None, attempts, sleep=SleepRecorder())

    assert attempts.count == 1


@pytest.mark.asyncio
async def test_each_attempt_gets_a_fresh_signal() -> None:
    attempts = _Attempts(ConnectionResetError("reset"), "stream")

    await with_retry("test", CancellationToken(), 5.0, attempts, sleep=SleepRecorder())

    assert len(attempts.signals) == 2
    assert attempts.signals[0] is not attempts.signals[1]


@pytest.mark.asyncio
async def test_attempt_timeout_raises_request_timeout() -> None:
    async def _hang(signal: CancellationToken) -> str:
        await asyncio.Event().wait()
        return "never"

    with pytest.raises(RequestTimeoutError):
        await with_retry("slow", CancellationToken(), 0.01, _hang, delays=(), sleep=SleepRecorder())


@pytest.mark.asyncio
async def test_timeout_is_retried_as_transient() -> None:
    calls = 0

    async def _slow_then_fast(signal: CancellationToken) -> str:
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.Event().wait()
        return "stream"

    result = await with_retry("slow", CancellationToken(), 0.01, _slow_then_fast, sleep=SleepRecorder())

    assert result == "stream"
    assert calls == 2


@pytest.mark.asyncio
async def test_parent_cancellation_aborts_in_flight_attempt() -> None:
    parent = CancellationToken()
    started = asyncio.Event()

    async def _hang(signal: CancellationToken) -> str:
        started.set()
        await asyncio.Event().wait()
        return "never"

    task = asyncio.create_task(with_retry("test", parent, None, _hang, sleep=SleepRecorder()))
    await started.wait()
    parent.cancel()

    with pytest.raises(OperationCancelledError):
        await task


@pytest.mark.asyncio
async def test_already_cancelled_parent_skips_attempts() -> None:
    parent = CancellationToken()
    parent.cancel()
    attempts = _Attempts("stream")

    with pytest.raises(OperationCancelledError):
        await with_retry("test", parent, 5.0, attempts)

    assert attempts.count == 0


@pytest.mark.asyncio
async def test_cancellation_interrupts_backoff_sleep() -> None:
    parent = CancellationToken()
    attempts = _Attempts(StatusError(503, "Service Unavailable"), "stream")

    async def _cancel_during_sleep(delay: float) -> None:
        parent.cancel()
        await parent.sleep(delay)

    with pytest.raises(OperationCancelledError):
        await with_retry("test", parent, 5.0, attempts, sleep=_cancel_during_sleep)

    assert attempts.count == 1
