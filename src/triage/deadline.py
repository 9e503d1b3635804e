"""Deadlines for external calls.

Every call the webhook path makes to GitHub, the completion API, Stripe or
the database is bounded, and a timeout surfaces as UpstreamTimeoutError.
"""

import asyncio
from typing import Awaitable, TypeVar

from src.triage.errors import UpstreamTimeoutError

T = TypeVar("T")


async def with_deadline(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await ``awaitable`` for at most ``timeout`` seconds.

    Args:
        awaitable: The call to bound.
        timeout: Deadline in seconds.
        operation: Short description used in the error message.

    Returns:
        The awaited result.

    Raises:
        UpstreamTimeoutError: If the deadline passes first.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise UpstreamTimeoutError(
            f"{operation} timed out after {timeout:g}s", cause=e
        ) from e
