"""
Timeout racing for remote operations.

call_with_timeout() races an operation against a timer and settles on
whichever finishes first. The losing operation is discarded, not cancelled:
an in-flight remote call may still complete after the timeout fires, and its
outcome is dropped.
"""

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from resilience_toolkit.core.exceptions import OperationTimeoutError

T = TypeVar("T")


def _discard_outcome(task: "asyncio.Task[Any]") -> None:
    if not task.cancelled():
        task.exception()


async def call_with_timeout(
    func: Callable[..., Awaitable[T]],
    timeout_seconds: float,
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Run func and raise OperationTimeoutError if it has not settled in time.

    Args:
        func: Async callable to run
        timeout_seconds: Explicit bound in seconds (must be > 0)
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        The result of func when it settles first

    Raises:
        OperationTimeoutError: The timer won the race
        Exception: Whatever func raised, when it settled first
    """
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be positive")

    task = asyncio.ensure_future(func(*args, **kwargs))
    done, _ = await asyncio.wait({task}, timeout=timeout_seconds)

    if task in done:
        return task.result()

    task.add_done_callback(_discard_outcome)
    raise OperationTimeoutError(timeout_seconds)
