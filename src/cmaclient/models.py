# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Data model shared by the client layers.

Resource identity and server metadata (ResourceRef, Sys, VersionedPayload),
the request/response pair that flows through the executor, and the value
objects describing rate limiting, retries, polling and batch outcomes.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any, Generic, TypeVar

import orjson
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

T = TypeVar("T")

__all__ = (
    "APIRequest",
    "APIResponse",
    "BatchResult",
    "BatchStats",
    "PollResult",
    "PollSpec",
    "PollState",
    "RateLimitHeaders",
    "RateLimitState",
    "ResourceRef",
    "RetryContext",
    "Sys",
    "VersionedPayload",
)


class ResourceRef(BaseModel):
    """Identifies one mutable remote object."""

    model_config = ConfigDict(frozen=True)

    space_id: str = Field(min_length=1)
    environment_id: str = Field(default="master", min_length=1)
    resource_id: str = Field(min_length=1)
    resource_type: str = "entries"

    @classmethod
    def entry(cls, space_id: str, entry_id: str, environment_id: str = "master"):
        return cls(
            space_id=space_id,
            environment_id=environment_id,
            resource_id=entry_id,
            resource_type="entries",
        )

    @classmethod
    def asset(cls, space_id: str, asset_id: str, environment_id: str = "master"):
        return cls(
            space_id=space_id,
            environment_id=environment_id,
            resource_id=asset_id,
            resource_type="assets",
        )

    @classmethod
    def environment(cls, space_id: str, environment_id: str):
        return cls(
            space_id=space_id,
            environment_id=environment_id,
            resource_id=environment_id,
            resource_type="environments",
        )

    @property
    def path(self) -> str:
        if self.resource_type == "environments":
            return f"/spaces/{self.space_id}/environments/{self.resource_id}"
        return f"{self.collection_path}/{self.resource_id}"

    @property
    def collection_path(self) -> str:
        if self.resource_type == "environments":
            return f"/spaces/{self.space_id}/environments"
        return (
            f"/spaces/{self.space_id}/environments/{self.environment_id}"
            f"/{self.resource_type}"
        )

    def __str__(self) -> str:
        return self.path


class Sys(BaseModel):
    """Server-assigned metadata attached to every resource representation."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    type: str
    version: int = Field(ge=1)
    status: str | None = None
    # the link object ``status`` was read from, kept for re-encoding
    status_link: dict[str, Any] | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    def _flatten_status_link(cls, data):
        # environments report status as a link: {"sys": {"id": "ready", ...}}
        if isinstance(data, dict) and isinstance(data.get("status"), dict):
            link = data["status"]
            data = {
                **data,
                "status": (link.get("sys") or {}).get("id"),
                "status_link": link,
            }
        return data

    def to_wire(self) -> dict[str, Any]:
        """The ``sys`` object as the server represents it."""
        out = self.model_dump(mode="json")
        if self.status_link is not None and self.status == (
            self.status_link.get("sys") or {}
        ).get("id"):
            out["status"] = self.status_link
        elif out.get("status") is None:
            out.pop("status", None)
        return out

    @property
    def published_version(self) -> int | None:
        return (self.model_extra or {}).get("publishedVersion")


class VersionedPayload(BaseModel, Generic[T]):
    """
    A resource body paired with the ``sys`` observed when it was fetched.

    The observed ``sys.version`` is the optimistic-lock token for the next
    mutation of the resource.
    """

    sys: Sys
    data: T

    @property
    def version(self) -> int:
        return self.sys.version

    def with_data(self, data: T) -> VersionedPayload[T]:
        """Return a copy carrying new data and the same observed sys."""
        return self.model_copy(update={"data": data})


class APIRequest(BaseModel):
    """One logical HTTP call handed to the executor."""

    method: str = "GET"
    path: str
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    body: bytes | None = None

    @field_validator("method", mode="before")
    def _upper_method(cls, v):
        return v.upper() if isinstance(v, str) else v

    @classmethod
    def with_json(
        cls,
        method: str,
        path: str,
        payload: Any,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> APIRequest:
        return cls(
            method=method,
            path=path,
            headers=headers or {},
            params=params or {},
            body=orjson.dumps(payload),
        )


class APIResponse(BaseModel):
    """What a transport returns for one HTTP exchange."""

    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @field_validator("headers", mode="before")
    def _lower_header_names(cls, v):
        if isinstance(v, Mapping):
            return {str(k).lower(): str(val) for k, val in v.items()}
        return v

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def request_id(self) -> str | None:
        return self.headers.get("x-contentful-request-id")

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    def json(self) -> Any:
        if not self.body:
            return None
        return orjson.loads(self.body)


class RateLimitHeaders(BaseModel):
    """Rate limit information reported by the server on a response."""

    limit: float | None = None
    remaining: float | None = None
    reset: float | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        limit_header: str = "X-Contentful-RateLimit-Second-Limit",
        remaining_header: str = "X-Contentful-RateLimit-Second-Remaining",
        reset_header: str = "X-Contentful-RateLimit-Reset",
    ) -> RateLimitHeaders:
        lowered = {k.lower(): v for k, v in headers.items()}

        def _read(name: str) -> float | None:
            raw = lowered.get(name.lower())
            if raw is None:
                return None
            try:
                return float(raw)
            except ValueError:
                return None

        return cls(
            limit=_read(limit_header),
            remaining=_read(remaining_header),
            reset=_read(reset_header),
        )

    @property
    def present(self) -> bool:
        return self.limit is not None or self.remaining is not None


class RateLimitState(BaseModel):
    """Point-in-time snapshot of a token bucket."""

    capacity: float
    tokens_available: float
    refill_rate_per_second: float
    last_refill_timestamp: float


class RetryContext(BaseModel):
    """Bookkeeping for the attempts of one logical operation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    attempt: int = 0
    max_attempts: int = Field(ge=1)
    base_delay: float = Field(ge=0)
    last_error: Exception | None = None

    @property
    def attempts_left(self) -> int:
        return max(self.max_attempts - self.attempt, 0)


class PollState(str, Enum):
    """Lifecycle of an asynchronous server-side operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PollSpec(BaseModel):
    """Describes how to recognise the end of one asynchronous lifecycle."""

    model_config = ConfigDict(frozen=True)

    terminal_states: frozenset[str]
    failure_states: frozenset[str] = frozenset()
    pending_states: frozenset[str] = frozenset()
    interval: float = Field(default=1.0, ge=0)
    max_attempts: int | None = Field(default=None, ge=1)
    max_duration: float | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _validate_bounds(self):
        if self.max_attempts is None and self.max_duration is None:
            raise ValueError("PollSpec needs max_attempts or max_duration")
        if not self.terminal_states:
            raise ValueError("PollSpec needs at least one terminal state")
        overlap = self.terminal_states & self.failure_states
        if overlap:
            raise ValueError(
                f"States cannot be both terminal and failed: {sorted(overlap)}"
            )
        return self

    def classify(self, status: str | None) -> PollState:
        """Map a server-reported status onto the poll state machine."""
        if status in self.terminal_states:
            return PollState.READY
        if status in self.failure_states:
            return PollState.FAILED
        if status in self.pending_states:
            return PollState.PENDING
        return PollState.IN_PROGRESS


class PollResult(BaseModel):
    """Successful outcome of a poll."""

    state: PollState
    status: str | None
    payload: VersionedPayload[Any]
    attempts: int
    elapsed: float


class BatchResult(BaseModel):
    """Outcome of one item of a batch, addressed by its input index."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: int
    item: Any = None
    value: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return the value, or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value


class BatchStats(BaseModel):
    """Counters of one batch run."""

    total: int = 0
    concurrency: int = 1
    in_flight: int = 0
    peak_in_flight: int = 0
    succeeded: int = 0
    failed: int = 0
