# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Request observers.

The executor calls every registered observer synchronously before each
attempt, after each response and before each retry. Subclass
BaseObserver and override the hooks you need.
"""

from cmaclient.common.logging import get_logger
from cmaclient.models import APIRequest, APIResponse

__all__ = ("BaseObserver", "LoggingObserver")


class BaseObserver:
    """Observer whose hooks do nothing."""

    def on_request(self, request: APIRequest, attempt: int) -> None:
        pass

    def on_response(
        self, request: APIRequest, response: APIResponse, attempt: int
    ) -> None:
        pass

    def on_retry(
        self, request: APIRequest, error: Exception, attempt: int, delay: float
    ) -> None:
        pass


class LoggingObserver(BaseObserver):
    """Emits one structured log event per request, response and retry."""

    def __init__(self, name: str = "cmaclient.http"):
        self.log = get_logger(name)

    def on_request(self, request: APIRequest, attempt: int) -> None:
        self.log.debug(
            "http.request", method=request.method, path=request.path, attempt=attempt
        )

    def on_response(
        self, request: APIRequest, response: APIResponse, attempt: int
    ) -> None:
        log = self.log.info if response.ok else self.log.warning
        log(
            "http.response",
            method=request.method,
            path=request.path,
            status=response.status,
            attempt=attempt,
            request_id=response.request_id,
        )

    def on_retry(
        self, request: APIRequest, error: Exception, attempt: int, delay: float
    ) -> None:
        self.log.warning(
            "http.retry",
            method=request.method,
            path=request.path,
            attempt=attempt,
            delay=round(delay, 3),
            error=type(error).__name__,
            status=getattr(error, "status_code", None),
        )
