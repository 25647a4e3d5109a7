"""Structured cancellation tokens.

A :class:`CancellationToken` is one-directional: once cancelled it stays
cancelled. Tokens compose through :func:`linked_token`, which derives a child
that fires when its parent fires or when a per-attempt timeout elapses, and
releases both links when the scope exits.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import logging
import threading
from typing import Any, AsyncIterable, AsyncIterator, Awaitable, Callable, Iterator, TypeVar

from .errors import AgentError, OperationCancelledError, RequestTimeoutError

__all__ = ["CancellationToken", "linked_token"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")
ErrorFactory = Callable[[], AgentError]
_EXHAUSTED = object()


class CancellationToken:
    """Thread-safe, one-shot cancellation flag with async waiters."""

    def __init__(self, label: str = "session") -> None:
        self.label = label
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: str | None = None
        self._error_factory: ErrorFactory = OperationCancelledError
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        state = f"cancelled:{self._reason}" if self._cancelled else "active"
        return f"CancellationToken({self.label!r}, {state})"

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled", *, error: ErrorFactory | None = None) -> bool:
        """Fire the token. Returns ``False`` when it had already fired."""

        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            if error is not None:
                self._error_factory = error
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        LOGGER.debug("Token %s cancelled (%s)", self.label, reason)
        for callback in callbacks:
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` once the token fires; returns a remover.

        The callback runs immediately when the token has already fired.
        """

        with self._lock:
            if not self._cancelled:
                key = next(self._ids)
                self._callbacks[key] = callback
                return lambda: self._remove(key)
        callback()
        return lambda: None

    def _remove(self, key: int) -> None:
        with self._lock:
            self._callbacks.pop(key, None)

    def error(self) -> AgentError:
        return self._error_factory()

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise self._error_factory()

    async def wait(self) -> None:
        """Suspend until the token fires."""

        if self._cancelled:
            return
        loop = asyncio.get_running_loop()
        future: asyncio.Future[None] = loop.create_future()

        def _wake() -> None:
            loop.call_soon_threadsafe(_resolve, future)

        remove = self.add_callback(_wake)
        try:
            await future
        finally:
            remove()

    async def race(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token fires first.

        When the token wins, the pending operation is cancelled, allowed to
        unwind, and the token's error is raised.
        """

        if self._cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            elif asyncio.isfuture(awaitable):
                awaitable.cancel()
            raise self._error_factory()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except BaseException:
            task.cancel()
            waiter.cancel()
            raise
        if task in done:
            waiter.cancel()
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise self._error_factory()

    async def sleep(self, delay: float) -> None:
        await self.race(asyncio.sleep(delay))

    async def iterate(self, source: AsyncIterable[T]) -> AsyncIterator[T]:
        """Yield from ``source``, aborting the pending read when the token fires."""

        iterator = source.__aiter__()

        async def _next() -> Any:
            try:
                return await iterator.__anext__()
            except StopAsyncIteration:
                return _EXHAUSTED

        try:
            while True:
                item = await self.race(_next())
                if item is _EXHAUSTED:
                    return
                yield item
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()


def _resolve(future: asyncio.Future[None]) -> None:
    if not future.done():
        future.set_result(None)


@contextlib.contextmanager
def linked_token(
    parent: CancellationToken | None,
    *,
    timeout: float | None = None,
    label: str = "attempt",
) -> Iterator[CancellationToken]:
    """Derive a child token firing on ``parent`` OR after ``timeout`` seconds.

    A ``timeout`` of ``None`` or ``<= 0`` disables the timer. Both the parent
    link and the timer are released on every exit path.
    """

    child = CancellationToken(label)
    remove_link: Callable[[], None] = lambda: None
    timer: asyncio.TimerHandle | None = None
    if parent is not None:
        remove_link = parent.add_callback(
            lambda: child.cancel(parent.reason or "cancelled", error=parent.error)
        )
    if timeout is not None and timeout > 0:
        loop = asyncio.get_running_loop()
        timer = loop.call_later(
            timeout,
            lambda: child.cancel("timeout", error=lambda: RequestTimeoutError(label, timeout)),
        )
    try:
        yield child
    finally:
        if timer is not None:
            timer.cancel()
        remove_link()
