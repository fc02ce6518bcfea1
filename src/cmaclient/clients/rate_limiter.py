# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Rate limiters using the token bucket algorithm.

This module provides a fixed-rate TokenBucketRateLimiter, plus two
variants that follow the limits the server reports in its response
headers: PercentageRateLimiter (a share of the server limit) and
AutoRateLimiter (paces itself on the remaining budget).
"""

import asyncio
import logging
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cmaclient.models import RateLimitHeaders, RateLimitState

from .protocols import Clock, Sleep

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_BOOTSTRAP_RATE = 7.0
_EPSILON = 1e-3
_PERCENTAGE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*%\s*$")

__all__ = (
    "DEFAULT_BOOTSTRAP_RATE",
    "AutoRateLimiter",
    "PercentageRateLimiter",
    "TokenBucketRateLimiter",
    "create_rate_limiter",
)


class TokenBucketRateLimiter:
    """
    Rate limiter using the token bucket algorithm.

    Tokens are added to the bucket continuously at ``rate`` per ``period``
    up to ``max_tokens``; each request consumes one. When the bucket is
    empty, ``acquire`` sleeps until enough tokens have been refilled. It
    never rejects a caller.

    Token consumption, refill and recalibration all happen under one
    asyncio lock. Sleeping happens outside it, so waiting callers do not
    block recalibration.

    Example:
        ```python
        limiter = TokenBucketRateLimiter(rate=10, period=1.0)

        await limiter.acquire()
        result = await limiter.execute(my_async_function, arg1, kwarg1=value1)
        ```
    """

    def __init__(
        self,
        rate: float,
        period: float = 1.0,
        max_tokens: float | None = None,
        *,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ):
        """
        Initialize the rate limiter.

        Args:
            rate: Maximum number of tokens per period.
            period: Time period in seconds.
            max_tokens: Maximum token bucket capacity (defaults to rate).
            clock: Monotonic clock returning seconds.
            sleep: Coroutine function used to wait.
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        if period <= 0:
            raise ValueError("period must be positive")
        self.rate = float(rate)
        self.period = float(period)
        # a bucket must hold at least one whole request
        capacity = max_tokens if max_tokens is not None else rate
        self.max_tokens = max(float(capacity), 1.0)
        self.tokens = self.max_tokens
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self.last_refill = self._now()
        self._lock = asyncio.Lock()

        logger.debug(
            f"Initialized {type(self).__name__} with rate={rate}, "
            f"period={period}, max_tokens={self.max_tokens}"
        )

    def _now(self) -> float:
        return self._clock() if self._clock is not None else time.monotonic()

    @property
    def rate_per_second(self) -> float:
        return self.rate / self.period

    async def _refill(self) -> None:
        """Add the tokens accrued since the last refill, up to capacity."""
        now = self._now()
        elapsed = now - self.last_refill
        new_tokens = elapsed * self.rate_per_second

        if new_tokens > 0:
            self.tokens = min(self.tokens + new_tokens, self.max_tokens)
            self.last_refill = now

    async def reserve(self, tokens: float = 1.0) -> float:
        """
        Take tokens from the bucket if they are available.

        Args:
            tokens: Number of tokens to take.

        Returns:
            0.0 if the tokens were taken, otherwise the wait time in
            seconds until they could be. Nothing is taken in that case.
        """
        async with self._lock:
            if tokens > self.max_tokens:
                raise ValueError(
                    f"Cannot acquire {tokens} tokens from a bucket holding "
                    f"at most {self.max_tokens}"
                )
            await self._refill()

            if self.tokens >= tokens:
                self.tokens -= tokens
                return 0.0

            deficit = tokens - self.tokens
            wait_time = deficit / self.rate_per_second

            logger.debug(
                f"Not enough tokens (requested: {tokens}, available: {self.tokens:.2f}), "
                f"wait time: {wait_time:.3f}s"
            )
            return wait_time

    async def acquire(self, tokens: float = 1.0) -> None:
        """
        Wait until ``tokens`` are available, then consume them.

        Args:
            tokens: Number of tokens to consume.
        """
        while True:
            wait_time = await self.reserve(tokens)
            if wait_time <= 0:
                return
            await self._sleep(wait_time)

    async def execute(
        self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """
        Execute a coroutine with rate limiting.

        Args:
            func: Async function to execute.
            *args: Positional arguments for func.
            **kwargs: Keyword arguments for func.

        Returns:
            Result from func.
        """
        await self.acquire()
        return await func(*args, **kwargs)

    async def recalibrate(self, rate: float, max_tokens: float | None = None) -> None:
        """
        Change the refill rate and capacity.

        Tokens accrued under the old rate are credited first; the bucket is
        then clipped to the new capacity.
        """
        if rate <= 0:
            raise ValueError("rate must be positive")
        async with self._lock:
            await self._refill()
            self._apply(rate, max_tokens if max_tokens is not None else rate)

    def _apply(self, rate: float, max_tokens: float) -> None:
        if rate != self.rate or max_tokens != self.max_tokens:
            logger.info(
                f"Rate limit recalibrated: rate {self.rate:.2f} -> {rate:.2f}, "
                f"capacity {self.max_tokens:.2f} -> {max_tokens:.2f}"
            )
        self.rate = float(rate)
        self.max_tokens = max(float(max_tokens), 1.0)
        self.tokens = min(self.tokens, self.max_tokens)

    async def observe(self, headers: RateLimitHeaders) -> None:
        """Fixed-rate limiters ignore server-reported limits."""

    def state(self) -> RateLimitState:
        return RateLimitState(
            capacity=self.max_tokens,
            tokens_available=self.tokens,
            refill_rate_per_second=self.rate_per_second,
            last_refill_timestamp=self.last_refill,
        )


class PercentageRateLimiter(TokenBucketRateLimiter):
    """
    Uses a fixed share of the limit the server reports.

    Until the first response carrying a limit arrives, the share is taken
    of ``bootstrap_limit``.
    """

    def __init__(
        self,
        percentage: float,
        bootstrap_limit: float = DEFAULT_BOOTSTRAP_RATE,
        **kwargs: Any,
    ):
        if not 0 < percentage <= 100:
            raise ValueError("percentage must be in (0, 100]")
        self.fraction = percentage / 100.0
        self.server_limit: float | None = None
        super().__init__(bootstrap_limit * self.fraction, **kwargs)

    async def observe(self, headers: RateLimitHeaders) -> None:
        limit = headers.limit
        if limit is None or limit <= 0 or limit == self.server_limit:
            return
        async with self._lock:
            await self._refill()
            self.server_limit = limit
            rate = limit * self.fraction
            self._apply(rate, rate)


class AutoRateLimiter(TokenBucketRateLimiter):
    """
    Paces requests on the budget the server says is left.

    On every response with rate limit headers the refill rate becomes
    ``remaining / max(reset, epsilon)``, clipped to ``[min_rate, limit]``,
    and the capacity becomes the server limit. The bucket never holds more
    tokens than the server reports remaining.
    """

    def __init__(
        self,
        bootstrap_rate: float = DEFAULT_BOOTSTRAP_RATE,
        min_rate: float = 1.0,
        **kwargs: Any,
    ):
        if min_rate <= 0:
            raise ValueError("min_rate must be positive")
        self.min_rate = min_rate
        self.server_limit: float | None = None
        super().__init__(bootstrap_rate, **kwargs)

    async def observe(self, headers: RateLimitHeaders) -> None:
        if not headers.present:
            return
        async with self._lock:
            await self._refill()
            if headers.limit is not None and headers.limit > 0:
                self.server_limit = headers.limit
            ceiling = self.server_limit or self.max_tokens

            if headers.remaining is None:
                rate = ceiling
            else:
                window = max(headers.reset or 0.0, _EPSILON)
                rate = headers.remaining / window * self.period
                rate = min(max(rate, self.min_rate), ceiling)

            self._apply(rate, ceiling)
            if headers.remaining is not None:
                self.tokens = min(self.tokens, max(headers.remaining, 0.0))


def create_rate_limiter(
    rate_limit: str | float,
    *,
    clock: Clock | None = None,
    sleep: Sleep | None = None,
) -> TokenBucketRateLimiter:
    """
    Build the limiter matching a ``rate_limit`` setting.

    Args:
        rate_limit: ``"auto"``, a number of requests per second (or its
            string form), or a percentage such as ``"80%"``.
        clock: Monotonic clock passed to the limiter.
        sleep: Sleep coroutine passed to the limiter.
    """
    if isinstance(rate_limit, (int, float)):
        return TokenBucketRateLimiter(rate_limit, clock=clock, sleep=sleep)

    text = rate_limit.strip().lower()
    if text == "auto":
        return AutoRateLimiter(clock=clock, sleep=sleep)

    match = _PERCENTAGE.match(text)
    if match:
        return PercentageRateLimiter(float(match.group(1)), clock=clock, sleep=sleep)

    try:
        rate = float(text)
    except ValueError:
        raise ValueError(
            f"Invalid rate limit {rate_limit!r}: expected 'auto', a number or 'NN%'"
        ) from None
    return TokenBucketRateLimiter(rate, clock=clock, sleep=sleep)
