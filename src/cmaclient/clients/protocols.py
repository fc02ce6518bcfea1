# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Interfaces the client core consumes.

The core never opens sockets, reads the wall clock or sleeps on its own:
it calls a Transport, a Clock and a Sleep function handed to it, which
keeps every layer testable without a network or real time.
"""

from collections.abc import Awaitable, Callable, Mapping
from typing import Protocol, runtime_checkable

from cmaclient.models import APIRequest, APIResponse, RateLimitHeaders

__all__ = (
    "Clock",
    "RateLimiter",
    "RequestObserver",
    "Sleep",
    "Transport",
)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@runtime_checkable
class Transport(Protocol):
    """Sends exactly one HTTP request."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
    ) -> APIResponse:
        """
        Send a request and return the response, whatever its status.

        Raises:
            TransportError: When no response was received (timeout,
                connection refused or reset).
        """
        ...


@runtime_checkable
class RateLimiter(Protocol):
    """Admits requests within a budget."""

    async def acquire(self, tokens: float = 1.0) -> None: ...

    async def observe(self, headers: RateLimitHeaders) -> None: ...


@runtime_checkable
class RequestObserver(Protocol):
    """Receives synchronous callbacks from the executor."""

    def on_request(self, request: APIRequest, attempt: int) -> None: ...

    def on_response(
        self, request: APIRequest, response: APIResponse, attempt: int
    ) -> None: ...

    def on_retry(
        self, request: APIRequest, error: Exception, attempt: int, delay: float
    ) -> None: ...
