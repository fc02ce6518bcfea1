# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
The request executor.

Every HTTP call of the client passes through RequestExecutor.execute,
which fuses rate admission, transport, response classification and
retries into one resilient call.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any
from urllib.parse import urlencode

from cmaclient.config import ClientConfig
from cmaclient.models import APIRequest, APIResponse, RateLimitHeaders

from .errors import APIClientError, RetryExhaustedError, error_from_response
from .protocols import Clock, RateLimiter, RequestObserver, Sleep, Transport
from .rate_limiter import create_rate_limiter
from .resilience import RetryPolicy

logger = logging.getLogger(__name__)

__all__ = ("RequestExecutor",)


class RequestExecutor:
    """
    Executes one logical request with rate limiting and retries.

    Each attempt first takes a token from the rate limiter, then goes out
    through the transport. Rate limit headers of every response are fed
    back to the limiter whatever the status. 2xx responses are returned;
    transient failures (429, retryable 5xx, transport errors) are retried
    with backoff until ``retry_limit`` attempts have been made; everything
    else, including 409 version conflicts, is raised to the caller.

    Example:
        ```python
        executor = RequestExecutor(AiohttpTransport(), ClientConfig())
        response = await executor.execute(APIRequest(method="GET", path=ref.path))
        ```
    """

    def __init__(
        self,
        transport: Transport,
        config: ClientConfig | None = None,
        *,
        rate_limiter: RateLimiter | None = None,
        retry_policy: RetryPolicy | None = None,
        observers: Iterable[RequestObserver] = (),
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ):
        """
        Initialize the executor.

        Args:
            transport: Sends the HTTP requests.
            config: Client configuration; defaults are read from the environment.
            rate_limiter: Overrides the limiter built from ``config.rate_limit``.
            retry_policy: Overrides the policy built from ``config``.
            observers: Receive request, response and retry callbacks.
            clock: Monotonic clock for the default rate limiter.
            sleep: Coroutine function used for backoff and rate limit waits.
        """
        self.config = config if config is not None else ClientConfig()
        self.transport = transport
        self._sleep = sleep or asyncio.sleep
        self.rate_limiter = rate_limiter or create_rate_limiter(
            self.config.rate_limit, clock=clock, sleep=self._sleep
        )
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.observers = list(observers)

    def add_observer(self, observer: RequestObserver) -> None:
        self.observers.append(observer)

    def _notify(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            getattr(observer, hook)(*args)

    def build_url(self, request: APIRequest) -> str:
        if request.path.startswith(("http://", "https://")):
            url = request.path
        else:
            url = f"{self.config.host}/{request.path.lstrip('/')}"
        if request.params:
            sep = "&" if "?" in url else "?"
            url = f"{url}{sep}{urlencode(request.params, doseq=True)}"
        return url

    def build_headers(self, request: APIRequest) -> dict[str, str]:
        headers = {"user-agent": self.config.user_agent}
        headers.update({k.lower(): v for k, v in self.config.default_headers.items()})
        headers.update(self.config.auth_headers())
        headers.update({k.lower(): v for k, v in request.headers.items()})
        return headers

    def _rate_limit_headers(self, response: APIResponse) -> RateLimitHeaders:
        return RateLimitHeaders.from_headers(
            response.headers,
            limit_header=self.config.rate_limit_limit_header,
            remaining_header=self.config.rate_limit_remaining_header,
            reset_header=self.config.rate_limit_reset_header,
        )

    async def _shielded_send(
        self, request: APIRequest, url: str, headers: dict[str, str]
    ) -> APIResponse:
        # once on the wire, the request is awaited even if we are cancelled
        task = asyncio.ensure_future(
            self.transport.send(request.method, url, headers, request.body)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                logger.warning(
                    f"Cancelled during {request.method} {request.path}; "
                    "awaiting the request already sent"
                )
                await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.warning(
                    f"{request.method} {request.path} failed after cancellation",
                    exc_info=task.exception(),
                )
            raise

    async def _attempt(
        self,
        request: APIRequest,
        url: str,
        headers: dict[str, str],
        attempt: int,
        shield_send: bool = False,
    ) -> APIResponse:
        await self.rate_limiter.acquire()
        self._notify("on_request", request, attempt)

        if shield_send:
            response = await self._shielded_send(request, url, headers)
        else:
            response = await self.transport.send(
                request.method, url, headers, request.body
            )

        await self.rate_limiter.observe(self._rate_limit_headers(response))
        self._notify("on_response", request, response, attempt)
        if not response.ok:
            raise error_from_response(response, self.config.rate_limit_reset_header)
        return response

    async def execute(
        self, request: APIRequest, *, shield_send: bool = False
    ) -> APIResponse:
        """
        Execute a request, retrying transient failures.

        Waiting for a rate limit token and backoff sleeps always unwind
        promptly on cancellation.

        Args:
            request: The request to send.
            shield_send: If set, a request already handed to the transport
                is awaited to completion before a cancellation propagates.

        Returns:
            The 2xx response.

        Raises:
            RetryExhaustedError: If every allowed attempt failed transiently.
            APIClientError: Any permanent failure, a version conflict, or the
                first transient failure when retries are disabled.
        """
        url = self.build_url(request)
        headers = self.build_headers(request)
        ctx = self.retry_policy.new_context()

        while True:
            ctx.attempt += 1
            try:
                return await self._attempt(
                    request, url, headers, ctx.attempt, shield_send
                )
            except APIClientError as e:
                ctx.last_error = e

            if not self.retry_policy.is_retryable(ctx.last_error):
                raise ctx.last_error

            if not self.retry_policy.should_retry(ctx):
                logger.warning(
                    f"Maximum attempts ({ctx.max_attempts}) reached for "
                    f"{request.method} {request.path}"
                )
                raise RetryExhaustedError(
                    f"{request.method} {request.path} failed after "
                    f"{ctx.attempt} attempts: {ctx.last_error.message}",
                    attempts=ctx.attempt,
                    last_error=ctx.last_error,
                ) from ctx.last_error

            delay = self.retry_policy.compute_delay(ctx)
            logger.info(
                f"Retry {ctx.attempt}/{ctx.max_attempts - 1} for {request.method} "
                f"{request.path} after {delay:.2f}s delay. Error: {ctx.last_error!s}"
            )
            self._notify("on_retry", request, ctx.last_error, ctx.attempt, delay)
            await self._sleep(delay)

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> APIResponse:
        """Build an APIRequest, JSON-encoding ``json`` when given, and execute it."""
        if json is not None:
            req = APIRequest.with_json(method, path, json, headers=headers, params=params)
        else:
            req = APIRequest(
                method=method, path=path, headers=headers or {}, params=params or {}
            )
        return await self.execute(req)
