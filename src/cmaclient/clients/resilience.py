# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Retry policy for API requests.

This module decides whether a failed attempt should be retried and how
long to wait first: exponential backoff with jitter, stretched to honour
the reset time a rate-limited response announces.
"""

import logging
import random
from collections.abc import Iterable

from cmaclient.models import RetryContext

from .errors import RateLimitError, ServerError, TransportError

logger = logging.getLogger(__name__)

__all__ = ("RetryPolicy",)


class RetryPolicy:
    """
    Classifies failures and computes backoff delays.

    Transient failures are rate limiting (429), server errors whose status
    is in ``retry_on_status`` and transport failures. Everything else,
    version conflicts included, is handed back to the caller untouched.

    Example:
        ```python
        policy = RetryPolicy(retry_limit=5, base_delay=1.0, max_delay=64.0)
        ctx = policy.new_context()
        ctx.attempt += 1
        ctx.last_error = error
        if policy.should_retry(ctx):
            await asyncio.sleep(policy.compute_delay(ctx))
        ```
    """

    def __init__(
        self,
        retry_limit: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 64.0,
        backoff_factor: float = 2.0,
        jitter: bool = True,
        retry_on_status: Iterable[int] = (500, 502, 503),
        retry_on_error: bool = True,
        rng: random.Random | None = None,
    ):
        """
        Initialize the retry policy.

        Args:
            retry_limit: Maximum number of attempts, the first one included.
            base_delay: Delay before the first retry, in seconds.
            max_delay: Upper bound for computed backoff delays.
            backoff_factor: Factor to increase delay with each retry.
            jitter: Whether to add randomness to the delay.
            retry_on_status: 5xx statuses treated as transient.
            retry_on_error: If False, no failure is ever retried.
            rng: Random source for jitter.
        """
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1")
        self.retry_limit = retry_limit
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.retry_on_status = frozenset(retry_on_status)
        self.retry_on_error = retry_on_error
        # This is not used for cryptographic purposes, just for jitter
        self._rng = rng or random.Random()  # noqa: S311

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            retry_limit=config.retry_limit,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            retry_on_status=config.retry_on_status,
            retry_on_error=config.retry_on_error,
        )

    def new_context(self) -> RetryContext:
        max_attempts = self.retry_limit if self.retry_on_error else 1
        return RetryContext(max_attempts=max_attempts, base_delay=self.base_delay)

    def is_retryable(self, error: BaseException | None) -> bool:
        if not self.retry_on_error or error is None:
            return False
        if isinstance(error, (RateLimitError, TransportError)):
            return True
        if isinstance(error, ServerError):
            return error.status_code in self.retry_on_status
        return False

    def should_retry(self, ctx: RetryContext) -> bool:
        return self.is_retryable(ctx.last_error) and ctx.attempt < ctx.max_attempts

    def backoff(self, attempt: int) -> float:
        """Backoff after ``attempt`` failed attempts, jittered and capped."""
        delay = self.base_delay * self.backoff_factor ** max(attempt - 1, 0)
        if self.jitter:
            delay *= self._rng.uniform(0.8, 1.2)
        return min(delay, self.max_delay)

    def compute_delay(self, ctx: RetryContext) -> float:
        """
        Delay before the next attempt.

        A rate-limited response that announced its reset time is never
        retried before that time has passed, whatever ``max_delay`` says.
        """
        delay = self.backoff(ctx.attempt)
        error = ctx.last_error
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            delay = max(delay, error.retry_after)
        return delay
