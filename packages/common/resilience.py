"""Retry helpers for transient failures.

- `RetryConfig`: attempts and linear backoff step
- `retry_async`: re-run a coroutine factory while a predicate classifies the error as transient

Only errors accepted by `is_retryable` are retried; everything else (and the
last transient error once attempts are exhausted) propagates unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

R = TypeVar("R")

log = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """Configuration for retries with linear backoff.

    Attributes:
        attempts: Maximum number of attempts (including the first try).
        base_delay: Delay step in seconds; attempt `n` is followed by `base_delay * n`.
    """
    attempts: int = 3
    base_delay: float = 0.1  # seconds

    def delay_for(self, attempt: int) -> float:
        """Sleep before the attempt that follows failed attempt number `attempt` (1-based)."""
        return self.base_delay * attempt


async def retry_async(
    fn: Callable[[], Awaitable[R]],
    config: RetryConfig,
    is_retryable: Callable[[BaseException], bool],
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    label: str = "operation",
) -> R:
    """Await `fn()` and retry it on transient errors.

    Args:
        fn: Zero-arg coroutine factory; called once per attempt.
        config: Attempts and backoff.
        is_retryable: Classifier for errors worth another attempt.
        on_retry: Optional hook called with (attempt, error) before sleeping.
        label: Name used in log lines.

    Returns:
        The result of the first successful attempt.
    """
    attempts = max(1, config.attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts or not is_retryable(e):
                raise
            delay = config.delay_for(attempt)
            log.warning("retry(%s/%s) %s: %s (sleep=%.2fs)", attempt, attempts, label, e, delay)
            if on_retry is not None:
                on_retry(attempt, e)
            await asyncio.sleep(delay)
    raise RuntimeError("Retry loop exited without result")  # unreachable
