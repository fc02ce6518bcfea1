# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Polling of long-running server-side operations.

Environment cloning and asset processing complete asynchronously: the
server accepts the request and the resource reports its progress in a
status field. AsyncResourcePoller fetches the resource at a fixed interval
until that status reaches a terminal state described by a PollSpec.
"""

import asyncio
import logging
import time
from collections.abc import Callable

from cmaclient.clients.errors import PollFailedError, PollTimedOutError
from cmaclient.clients.executor import RequestExecutor
from cmaclient.clients.protocols import Clock, Sleep
from cmaclient.codec import PayloadCodec
from cmaclient.models import (
    APIRequest,
    PollResult,
    PollSpec,
    PollState,
    ResourceRef,
    VersionedPayload,
)

logger = logging.getLogger(__name__)

StatusGetter = Callable[[VersionedPayload], str | None]

__all__ = (
    "AsyncResourcePoller",
    "StatusGetter",
    "asset_file_status",
    "asset_processed_spec",
    "environment_ready_spec",
    "sys_status",
)


def sys_status(payload: VersionedPayload) -> str | None:
    """Status reported in ``sys.status``."""
    return payload.sys.status


def asset_file_status(locale: str) -> StatusGetter:
    """
    Status of an asset's file for ``locale``.

    A processed file has a ``url``; before that only ``upload`` or
    ``uploadFrom`` is present.
    """

    def _status(payload: VersionedPayload) -> str | None:
        fields = payload.data.get("fields") or {}
        file = (fields.get("file") or {}).get(locale)
        if not file:
            return None
        if file.get("url"):
            return "ready"
        return "processing"

    return _status


def environment_ready_spec(
    interval: float = 1.0,
    max_attempts: int | None = 30,
    max_duration: float | None = None,
) -> PollSpec:
    return PollSpec(
        terminal_states={"ready"},
        failure_states={"failed", "failureCreating"},
        pending_states={"queued"},
        interval=interval,
        max_attempts=max_attempts,
        max_duration=max_duration,
    )


def asset_processed_spec(
    interval: float = 0.5,
    max_attempts: int | None = 30,
    max_duration: float | None = None,
) -> PollSpec:
    return PollSpec(
        terminal_states={"ready"},
        pending_states={"processing"},
        interval=interval,
        max_attempts=max_attempts,
        max_duration=max_duration,
    )


class AsyncResourcePoller:
    """
    Fetch a resource until its status is terminal.

    Each tick fetches the resource through the executor and classifies its
    status with the PollSpec. An unknown status counts as in progress.
    ``READY`` returns a PollResult, ``FAILED`` raises PollFailedError at
    once (failed processing does not heal itself), and running out of
    attempts or time raises PollTimedOutError. Every call ends in exactly
    one of these outcomes.

    Example:
        ```python
        poller = AsyncResourcePoller(executor)
        result = await poller.poll(
            ResourceRef.environment("space", "staging"),
            environment_ready_spec(interval=1.0, max_attempts=60),
        )
        ```
    """

    def __init__(
        self,
        executor: RequestExecutor,
        codec: PayloadCodec | None = None,
        *,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ):
        self.executor = executor
        self.codec = codec or PayloadCodec()
        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep

    async def fetch(self, ref: ResourceRef) -> VersionedPayload:
        response = await self.executor.execute(APIRequest(method="GET", path=ref.path))
        return self.codec.decode(response.body)

    async def poll(
        self,
        ref: ResourceRef,
        spec: PollSpec,
        status_of: StatusGetter | None = None,
    ) -> PollResult:
        """
        Poll ``ref`` until it reaches a terminal state.

        Args:
            ref: The resource to observe.
            spec: Terminal and failure states, interval and bounds.
            status_of: Extracts the status from a fetched payload;
                ``sys.status`` by default.

        Returns:
            The result carrying the payload that reached a terminal state.

        Raises:
            PollFailedError: The resource reached a failure state.
            PollTimedOutError: ``max_attempts`` or ``max_duration`` ran out.
        """
        status_of = status_of or sys_status
        started = self._clock()
        attempts = 0
        state = PollState.PENDING
        status: str | None = None

        while True:
            attempts += 1
            payload = await self.fetch(ref)
            status = status_of(payload)
            previous, state = state, spec.classify(status)
            elapsed = self._clock() - started

            if state is not previous:
                logger.debug(
                    f"{ref} moved {previous.value} -> {state.value} "
                    f"(status {status!r}, tick {attempts})"
                )

            if state is PollState.READY:
                logger.info(f"{ref} ready after {attempts} ticks ({elapsed:.2f}s)")
                return PollResult(
                    state=state,
                    status=status,
                    payload=payload,
                    attempts=attempts,
                    elapsed=elapsed,
                )

            if state is PollState.FAILED:
                logger.warning(f"{ref} failed with status {status!r}")
                raise PollFailedError(
                    f"{ref} reached failure state {status!r}",
                    status=status,
                    payload=payload,
                )

            if self._out_of_budget(spec, attempts, elapsed):
                logger.warning(
                    f"Gave up polling {ref} after {attempts} ticks ({elapsed:.2f}s), "
                    f"last status {status!r}"
                )
                raise PollTimedOutError(
                    f"{ref} not ready after {attempts} ticks ({elapsed:.2f}s)",
                    attempts=attempts,
                    elapsed=elapsed,
                    last_status=status,
                )

            await self._sleep(spec.interval)

    @staticmethod
    def _out_of_budget(spec: PollSpec, attempts: int, elapsed: float) -> bool:
        if spec.max_attempts is not None and attempts >= spec.max_attempts:
            return True
        if spec.max_duration is not None and elapsed >= spec.max_duration:
            return True
        return False
