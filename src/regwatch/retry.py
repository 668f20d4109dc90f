"""Bounded exponential-backoff retries for flaky upstream calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.2
DEFAULT_CAP_DELAY = 2.0


def backoff_delay(
    attempt: int,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    cap_delay: float = DEFAULT_CAP_DELAY,
) -> float:
    """Seconds to wait after the zero-based ``attempt`` failed."""
    return min(base_delay * (4**attempt), cap_delay)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    cap_delay: float = DEFAULT_CAP_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Every exception counts as a failure. The delay between attempts is
    deterministic (no jitter) and there is no wait after the final attempt.
    When all attempts fail the last exception is re-raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(max_attempts - 1):
        try:
            return await operation()
        except Exception as exc:
            delay = backoff_delay(attempt, base_delay=base_delay, cap_delay=cap_delay)
            logger.warning(
                "Attempt %d/%d failed (%s); retrying in %.2fs",
                attempt + 1,
                max_attempts,
                exc,
                delay,
            )
            await sleep(delay)

    # Final attempt: its exception propagates unchanged.
    return await operation()


async def fetch_json(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    cap_delay: float = DEFAULT_CAP_DELAY,
    sleep: Sleep = asyncio.sleep,
    **kwargs: Any,
) -> Any:
    """Issue one HTTP request with retries and return the decoded JSON body.

    Non-2xx responses, timeouts, and undecodable bodies are all retried.
    """

    async def _once() -> Any:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response.json()

    return await with_retry(
        _once,
        max_attempts,
        base_delay=base_delay,
        cap_delay=cap_delay,
        sleep=sleep,
    )
