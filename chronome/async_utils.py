"""Async helpers for the refresh pipeline.

Provides:
- CancellationToken: lifetime-scoped cancellation that resolves pending
  suspension points to a default value instead of raising
- run_blocking: run synchronous work in the default executor
"""

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation shared by everything a service owns.

    Once cancelled it stays cancelled. Awaiting through ``run`` turns a
    cancellation into a default result, so callers see "empty" rather than
    an exception.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        if not self._event.is_set():
            logger.debug("Cancellation requested")
        self._event.set()

    async def run(self, awaitable: Awaitable[T], default: Optional[T] = None) -> Optional[T]:
        """Await ``awaitable`` unless the token is cancelled first.

        Args:
            awaitable: Coroutine or future to race against cancellation
            default: Value returned when cancellation wins

        Returns:
            The awaitable's result, or ``default`` if cancelled

        Raises:
            Whatever the awaitable raises when it completes before cancellation
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return default

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _pending = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done and not self.cancelled:
            return task.result()

        if task.done():
            # Retrieve the outcome so a late failure is not reported as unhandled
            if not task.cancelled() and task.exception() is not None:
                logger.debug("Discarding failure after cancellation: %s", task.exception())
        else:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug("Discarding failure after cancellation: %s", e)
        return default

    async def sleep(self, seconds: float) -> bool:
        """Sleep for ``seconds`` or until cancelled.

        Returns:
            True if the token was cancelled
        """
        if self.cancelled:
            return True
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run a synchronous function in the loop's default executor.

    Args:
        func: Blocking callable
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Function result
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))
