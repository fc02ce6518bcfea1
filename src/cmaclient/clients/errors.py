# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Error classes for the management API client.

Every error raised by the client derives from APIClientError. Each class
carries a ``transient`` flag: transient errors may succeed when the same
request is sent again (rate limiting, server errors, transport failures,
version conflicts), permanent ones will not.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

import orjson

if TYPE_CHECKING:
    from cmaclient.models import APIResponse


class APIClientError(Exception):
    """Base exception for all API client errors."""

    transient: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
    ):
        """
        Initialize the API client error.

        Args:
            message: The error message.
            status_code: The HTTP status code, if applicable.
            headers: The response headers, if applicable.
            response_data: The decoded error body, if applicable.
        """
        self.message = message
        self.status_code = status_code
        self.headers = headers or {}
        self.response_data = response_data or {}
        super().__init__(message)

    @property
    def request_id(self) -> str | None:
        """The server-side request id, useful when reporting problems."""
        return self.response_data.get("requestId") or self.headers.get(
            "x-contentful-request-id"
        )

    @property
    def error_id(self) -> str | None:
        """The error identifier from the body's ``sys.id`` (e.g. ``VersionMismatch``)."""
        sys = self.response_data.get("sys")
        if isinstance(sys, dict):
            return sys.get("id")
        return None


class FieldError:
    """One field-level problem reported by a validation failure."""

    def __init__(
        self,
        name: str,
        path: list[str | int] | None = None,
        details: str | None = None,
        value: Any = None,
    ):
        self.name = name
        self.path = path or []
        self.details = details
        self.value = value

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FieldError:
        path = data.get("path") or []
        if isinstance(path, str):
            path = [path]
        return cls(
            name=data.get("name", "unknown"),
            path=list(path),
            details=data.get("details"),
            value=data.get("value"),
        )

    @property
    def dotted_path(self) -> str:
        return ".".join(str(p) for p in self.path)

    def __repr__(self) -> str:
        return f"FieldError(name={self.name!r}, path={self.dotted_path!r})"


class ValidationError(APIClientError):
    """Exception raised when the server rejects a payload (400, 422)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = 422,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
        errors: list[FieldError] | None = None,
    ):
        """
        Initialize the validation error.

        Args:
            message: The error message.
            status_code: The HTTP status code (default: 422).
            headers: The response headers, if applicable.
            response_data: The decoded error body, if applicable.
            errors: Field-level details. Parsed from ``details.errors`` in
                the response body when not given.
        """
        super().__init__(message, status_code, headers, response_data)
        if errors is None:
            details = self.response_data.get("details") or {}
            raw = details.get("errors", []) if isinstance(details, dict) else []
            errors = [FieldError.from_dict(e) for e in raw if isinstance(e, dict)]
        self.errors = errors


class AuthenticationError(APIClientError):
    """Exception raised when authentication fails (401)."""


class AccessDeniedError(APIClientError):
    """Exception raised when the token lacks permission for the call (403)."""


class ResourceNotFoundError(APIClientError):
    """Exception raised when a resource is not found (404)."""


class VersionConflictError(APIClientError):
    """Exception raised when a mutation carried a stale version (409)."""

    transient = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 409,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
        sent_version: int | None = None,
    ):
        super().__init__(message, status_code, headers, response_data)
        self.sent_version = sent_version


class RateLimitError(APIClientError):
    """Exception raised when a rate limit is exceeded (429)."""

    transient = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        headers: dict[str, str] | None = None,
        response_data: dict[str, Any] | None = None,
        retry_after: float | None = None,
    ):
        """
        Initialize the rate limit error.

        Args:
            message: The error message.
            status_code: The HTTP status code (default: 429).
            headers: The response headers, if applicable.
            response_data: The decoded error body, if applicable.
            retry_after: The time to wait before retrying, in seconds.
        """
        super().__init__(message, status_code, headers, response_data)
        self.retry_after = retry_after


class ServerError(APIClientError):
    """Exception raised when a server error occurs (5xx)."""

    transient = True


class TransportError(APIClientError):
    """Exception raised when no HTTP response was received at all."""

    transient = True


class APIConnectionError(TransportError):
    """Exception raised when a connection error occurs."""


class APITimeoutError(TransportError):
    """Exception raised when a request times out."""


class UnexpectedResponseError(APIClientError):
    """Exception raised for a non-2xx status outside the known taxonomy."""


class RetryExhaustedError(APIClientError):
    """Exception raised when every allowed attempt failed with a transient error."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: APIClientError,
    ):
        """
        Initialize the retry exhausted error.

        Args:
            message: The error message.
            attempts: Number of attempts performed.
            last_error: The error returned by the final attempt.
        """
        super().__init__(
            message,
            status_code=last_error.status_code,
            headers=last_error.headers,
            response_data=last_error.response_data,
        )
        self.attempts = attempts
        self.last_error = last_error


class VersionConflictExhaustedError(RetryExhaustedError):
    """Exception raised when a versioned mutation kept conflicting."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: APIClientError,
        last_version: int | None = None,
    ):
        super().__init__(message, attempts, last_error)
        self.last_version = last_version


class PollFailedError(APIClientError):
    """Exception raised when a polled resource reached a failure state."""

    def __init__(self, message: str, status: str | None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload


class PollTimedOutError(APIClientError):
    """Exception raised when a polled resource never reached a terminal state."""

    def __init__(
        self,
        message: str,
        attempts: int,
        elapsed: float,
        last_status: str | None = None,
    ):
        super().__init__(message)
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_status = last_status


_STATUS_ERRORS: dict[int, type[APIClientError]] = {
    400: ValidationError,
    401: AuthenticationError,
    403: AccessDeniedError,
    404: ResourceNotFoundError,
    409: VersionConflictError,
    422: ValidationError,
    429: RateLimitError,
}


def _decode_error_body(body: bytes) -> dict[str, Any]:
    if not body:
        return {}
    try:
        data = orjson.loads(body)
    except orjson.JSONDecodeError:
        return {"message": body.decode("utf-8", errors="replace")}
    return data if isinstance(data, dict) else {"message": str(data)}


def _retry_after(headers: dict[str, str], reset_header: str) -> float | None:
    for name in (reset_header.lower(), "retry-after"):
        value = headers.get(name)
        if value is None:
            continue
        try:
            return max(float(value), 0.0)
        except ValueError:
            continue
    return None


def error_from_response(
    response: APIResponse,
    reset_header: str = "X-Contentful-RateLimit-Reset",
) -> APIClientError:
    """
    Map a non-2xx response onto the error taxonomy.

    Args:
        response: The response received from the transport.
        reset_header: Header carrying the seconds until the rate limit resets.

    Returns:
        The error instance to raise.
    """
    status = response.status
    data = _decode_error_body(response.body)
    message = data.get("message") or f"HTTP {status}"
    headers = dict(response.headers)

    if status == 429:
        return RateLimitError(
            message,
            headers=headers,
            response_data=data,
            retry_after=_retry_after(headers, reset_header),
        )
    if status in _STATUS_ERRORS:
        return _STATUS_ERRORS[status](
            message, status_code=status, headers=headers, response_data=data
        )
    if status >= 500:
        return ServerError(
            message, status_code=status, headers=headers, response_data=data
        )
    return UnexpectedResponseError(
        message, status_code=status, headers=headers, response_data=data
    )
