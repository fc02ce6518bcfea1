# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Request execution layer.

Rate limiting, retry policy, error taxonomy, transport and observers,
fused by RequestExecutor into one resilient call.
"""

from .errors import (
    AccessDeniedError,
    APIClientError,
    APIConnectionError,
    APITimeoutError,
    AuthenticationError,
    FieldError,
    PollFailedError,
    PollTimedOutError,
    RateLimitError,
    ResourceNotFoundError,
    RetryExhaustedError,
    ServerError,
    TransportError,
    UnexpectedResponseError,
    ValidationError,
    VersionConflictError,
    VersionConflictExhaustedError,
    error_from_response,
)
from .executor import RequestExecutor
from .observers import BaseObserver, LoggingObserver
from .protocols import Clock, RateLimiter, RequestObserver, Sleep, Transport
from .rate_limiter import (
    AutoRateLimiter,
    PercentageRateLimiter,
    TokenBucketRateLimiter,
    create_rate_limiter,
)
from .resilience import RetryPolicy
from .transport import AiohttpTransport

__all__ = [
    "APIClientError",
    "APIConnectionError",
    "APITimeoutError",
    "AccessDeniedError",
    "AiohttpTransport",
    "AuthenticationError",
    "AutoRateLimiter",
    "BaseObserver",
    "Clock",
    "FieldError",
    "LoggingObserver",
    "PercentageRateLimiter",
    "PollFailedError",
    "PollTimedOutError",
    "RateLimitError",
    "RateLimiter",
    "RequestExecutor",
    "RequestObserver",
    "ResourceNotFoundError",
    "RetryExhaustedError",
    "RetryPolicy",
    "ServerError",
    "Sleep",
    "TokenBucketRateLimiter",
    "Transport",
    "TransportError",
    "UnexpectedResponseError",
    "ValidationError",
    "VersionConflictError",
    "VersionConflictExhaustedError",
    "create_rate_limiter",
    "error_from_response",
]
