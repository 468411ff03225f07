"""
Fetch With Retry
================

Runs a single table query under a hard timeout with exponential-backoff
retries. Never raises past its own boundary: callers receive either the
query's data or ``None``.

Critical queries (the ones the application cannot render without) report
their terminal failure through ``on_critical_failure`` so a blocking error
state can be shown; non-critical queries degrade silently to ``None``.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from blueprint.middleware.prometheus import record_fetch_attempt

T = TypeVar("T")

logger = logging.getLogger(__name__)


async def fetch_with_retry(
    table: str,
    query: Callable[[], Awaitable[T]],
    *,
    critical: bool,
    retries: int = 2,
    initial_delay: float = 1.0,
    timeout: float = 15.0,
    on_critical_failure: Optional[Callable[[str], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Optional[T]:
    """
    Execute ``query`` with at most ``retries + 1`` attempts.

    Args:
        table: Table name, used for logging, metrics and the error message
        query: Zero-argument callable returning an awaitable of the data
        critical: Whether a terminal failure must surface as a load error
        retries: Retries after the first attempt
        initial_delay: Delay before the first retry; doubled after each retry
        timeout: Hard timeout per attempt, in seconds
        on_critical_failure: Receives the load-error message for critical failures
        sleep: Awaitable sleep (injectable for tests)

    Returns:
        The query result, or None when every attempt failed
    """
    attempts = max(retries, 0) + 1
    delay = initial_delay

    for attempt in range(1, attempts + 1):
        try:
            data = await asyncio.wait_for(query(), timeout=timeout)
            record_fetch_attempt(table, "success")
            return data
        except asyncio.TimeoutError:
            record_fetch_attempt(table, "timeout")
            reason = f"timed out after {timeout}s"
        except Exception as e:
            record_fetch_attempt(table, "error")
            reason = f"{type(e).__name__}: {e}"

        if attempt < attempts:
            logger.warning(
                f"Fetching {table} failed ({reason}); "
                f"retrying in {delay:.2f}s ({attempts - attempt} retries left)"
            )
            await sleep(delay)
            delay *= 2
            continue

        if critical:
            message = f"Failed to load {table}. Please check your connection."
            logger.error(f"Fetching {table} failed after {attempts} attempts ({reason})")
            if on_critical_failure is not None:
                on_critical_failure(message)
        else:
            logger.info(f"Skipping {table} after {attempts} failed attempts ({reason})")

    return None
