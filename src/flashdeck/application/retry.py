"""
Bounded retry policy shared by the review and triage engines.

Only transient gateway failures are retried, with exponential backoff.
A rate-limited request waits the server-specified delay and is retried once.
Everything else surfaces on the first failure.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from flashdeck.domain.constants import (
    BACKOFF_BASE_SECONDS,
    MAX_RATE_LIMIT_DELAY,
    RATE_LIMIT_RETRIES,
)
from flashdeck.domain.errors import (
    OperationCancelledError,
    RateLimitedError,
    TransientGatewayError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """
    Args:
        max_attempts: Total attempts including the first one. Must be >= 1.
        base_delay: Delay before the first retry, in seconds. Doubles per retry.
        rate_limit_retries: How many times a 429 may be retried after waiting.
        max_rate_limit_delay: Upper bound on a server-requested Retry-After wait.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        max_attempts: int,
        base_delay: float = BACKOFF_BASE_SECONDS,
        rate_limit_retries: int = RATE_LIMIT_RETRIES,
        max_rate_limit_delay: float = MAX_RATE_LIMIT_DELAY,
        sleep: Sleep | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.rate_limit_retries = rate_limit_retries
        self.max_rate_limit_delay = max_rate_limit_delay
        self._sleep = sleep or asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the given 0-based failed attempt."""
        return self.base_delay * (2**attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        is_cancelled: Callable[[], bool] | None = None,
        describe: str = "request",
    ) -> T:
        """
        Run `operation` until it succeeds or the budget is exhausted.

        Raises:
            OperationCancelledError: if `is_cancelled()` turns true between attempts.
            GatewayError: the last failure once retrying is pointless or exhausted.
        """
        attempt = 0
        rate_limit_waits = 0

        while True:
            self._check_cancelled(is_cancelled, describe)
            try:
                return await operation()
            except TransientGatewayError as e:
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        f"{describe} failed after {attempt + 1}/{self.max_attempts} attempts: {e}"
                    )
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{describe} failed (attempt {attempt + 1}/{self.max_attempts}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                attempt += 1
            except RateLimitedError as e:
                if rate_limit_waits >= self.rate_limit_retries:
                    raise
                delay = min(e.retry_after, self.max_rate_limit_delay)
                rate_limit_waits += 1
                logger.warning(f"{describe} rate limited, retrying once in {delay:.2f}s")

            self._check_cancelled(is_cancelled, describe)
            await self._sleep(delay)

    @staticmethod
    def _check_cancelled(is_cancelled: Callable[[], bool] | None, describe: str) -> None:
        if is_cancelled is not None and is_cancelled():
            logger.debug(f"{describe} abandoned: owner was torn down")
            raise OperationCancelledError(f"{describe} cancelled")
