"""Bounded execution for outbound provider, index, and store calls."""

import asyncio
import builtins
from collections.abc import Awaitable

from mneme.errors import TimeoutError


async def bounded[T](
    awaitable: Awaitable[T],
    seconds: float | None,
    operation: str,
) -> T:
    """Await with a deadline, raising the engine's TimeoutError on expiry.

    Args:
        awaitable: The call to bound.
        seconds: Deadline in seconds. None disables the bound.
        operation: Name used in the error message and logs.
    """
    if seconds is None:
        return await awaitable

    try:
        async with asyncio.timeout(seconds):
            return await awaitable
    except TimeoutError:
        raise
    except builtins.TimeoutError as e:
        raise TimeoutError(operation, seconds) from e
