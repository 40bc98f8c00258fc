"""
Cooperative cancellation: a polled token plus helpers that race outbound calls
and sleeps against it.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

from models.errors import CycleCancelled
from utils.clock import Clock

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Set once by an emergency stop; checked before cycles and between items."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.warning(f"Cancellation requested: {reason}")

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise CycleCancelled(self.reason or "cancelled")


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    token: CancellationToken | None = None,
) -> T:
    """
    Await an outbound call with its own timeout.
    If the token fires first the call is cancelled and CycleCancelled is raised.
    """
    if token is not None and token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise CycleCancelled(token.reason or "cancelled")
    task = asyncio.ensure_future(awaitable)
    if token is None:
        return await asyncio.wait_for(task, timeout)

    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
        )
        if task in done:
            return task.result()
    finally:
        # The call never outlives its caller
        waiter.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if token.cancelled:
        raise CycleCancelled(token.reason or "cancelled")
    raise asyncio.TimeoutError(f"Call did not complete within {timeout:.1f}s")


async def interruptible_sleep(
    clock: Clock, seconds: float, token: CancellationToken
) -> bool:
    """Sleep on the injected clock; return True if the token fired first."""
    if token.cancelled:
        return True
    sleeper = asyncio.ensure_future(clock.sleep(seconds))
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (sleeper, waiter):
            if not pending.done():
                pending.cancel()
        await asyncio.gather(sleeper, waiter, return_exceptions=True)
    if not sleeper.cancelled():
        sleeper.result()  # Surface clock errors
    return token.cancelled
