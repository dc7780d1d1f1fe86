"""
Bounded exponential backoff with jitter.

Delay before attempt k (k >= 2) is min(max_delay, base_delay * 2^(k-2)) plus
uniform jitter in [0, delay * jitter_factor).
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from .. import config
from ..errors import OcrError, RetryExhausted
from ..models import RetryPolicy

log = logging.getLogger(__name__)

T = TypeVar("T")


def default_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.RETRY_MAX_ATTEMPTS,
        base_delay=config.RETRY_BASE_DELAY_SEC,
        max_delay=config.RETRY_MAX_DELAY_SEC,
        jitter_factor=config.RETRY_JITTER,
    )


class RetryController:
    def __init__(
        self,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ):
        self.policy = policy or default_policy()
        self._sleep = sleep
        self._rng = rng

    def base_delay_for(self, attempt: int) -> float:
        """Backoff before `attempt`, without jitter. Attempt 1 never waits."""
        if attempt < 2:
            return 0.0
        p = self.policy
        return min(p.max_delay, p.base_delay * (2 ** (attempt - 2)))

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay_for(attempt)
        return delay + self._rng() * delay * self.policy.jitter_factor

    async def run(
        self,
        operation: Callable[[int], Awaitable[T]],
        on_retry: Callable[[OcrError, int], None] | None = None,
    ) -> T:
        """
        Call `operation(attempt)` until it succeeds, fails permanently, or
        attempts run out. Only OcrErrors with `retryable` set are retried.
        """
        attempts = self.policy.max_attempts
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                await self._sleep(self.delay_for(attempt))
            try:
                return await operation(attempt)
            except OcrError as e:
                e.context.attempt = attempt
                if not e.retryable:
                    raise
                if attempt == attempts:
                    log.error(
                        "Giving up after %d attempts: %s", attempt, e,
                        extra={"error_code": e.code, "attempt": attempt},
                    )
                    raise RetryExhausted(e, attempt) from e
                log.warning(
                    "Attempt %d/%d failed: %s; retrying", attempt, attempts, e,
                    extra={"error_code": e.code, "attempt": attempt},
                )
                if on_retry is not None:
                    on_retry(e, attempt)
        raise AssertionError("unreachable")  # pragma: no cover
