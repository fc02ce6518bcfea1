# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Optimistic-concurrency mutations.

Every mutation of a version-locked resource carries the ``sys.version``
observed by the read it was derived from. When the server answers 409,
the mutator refetches the resource and derives the mutation again from
the fresh state, a bounded number of times.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from cmaclient.clients.errors import (
    VersionConflictError,
    VersionConflictExhaustedError,
)
from cmaclient.clients.executor import RequestExecutor
from cmaclient.codec import PayloadCodec
from cmaclient.models import APIRequest, APIResponse, ResourceRef, VersionedPayload

T = TypeVar("T")
logger = logging.getLogger(__name__)

MutateFn = Callable[[VersionedPayload], Any]

__all__ = ("MutateFn", "VersionedMutator")


class VersionedMutator:
    """
    Read-modify-write against version-locked resources.

    ``mutate_fn`` receives the freshly fetched payload and returns the new
    data. It must depend on nothing but that payload: after a conflict it
    is applied again to the newer state.

    Example:
        ```python
        mutator = VersionedMutator(executor)

        def retitle(payload):
            fields = dict(payload.data["fields"])
            fields["title"] = {"en-US": "New title"}
            return {**payload.data, "fields": fields}

        updated = await mutator.update(ref, retitle)
        await mutator.publish(ref, current=updated)
        ```
    """

    def __init__(
        self,
        executor: RequestExecutor,
        codec: PayloadCodec | None = None,
        max_retries: int | None = None,
    ):
        """
        Initialize the mutator.

        Args:
            executor: Executes every request.
            codec: Converts bodies to and from VersionedPayload.
            max_retries: Refetch-and-retry budget after a conflict;
                ``config.conflict_retry_limit`` by default.
        """
        self.executor = executor
        self.codec = codec or PayloadCodec()
        self.max_retries = (
            max_retries
            if max_retries is not None
            else executor.config.conflict_retry_limit
        )
        self.version_header = executor.config.version_header

    async def fetch(self, ref: ResourceRef) -> VersionedPayload:
        response = await self.executor.execute(APIRequest(method="GET", path=ref.path))
        return self.codec.decode(response.body)

    def _decode(self, response: APIResponse) -> VersionedPayload | None:
        if not response.body:
            return None
        return self.codec.decode(response.body)

    async def _with_conflict_retry(
        self,
        ref: ResourceRef,
        action: Callable[[VersionedPayload], Awaitable[T]],
        current: VersionedPayload | None,
        max_retries: int | None,
    ) -> T:
        budget = self.max_retries if max_retries is None else max_retries
        payload = current
        conflicts = 0

        while True:
            if payload is None:
                payload = await self.fetch(ref)
            try:
                return await action(payload)
            except VersionConflictError as e:
                conflicts += 1
                if conflicts > budget:
                    logger.warning(
                        f"Giving up on {ref} after {conflicts} version conflicts "
                        f"(last version {payload.version})"
                    )
                    raise VersionConflictExhaustedError(
                        f"{ref} kept changing: {conflicts} version conflicts, "
                        f"last seen version {payload.version}",
                        attempts=conflicts,
                        last_error=e,
                        last_version=payload.version,
                    ) from e
                logger.info(
                    f"Version {payload.version} of {ref} is stale, refetching "
                    f"({conflicts}/{budget})"
                )
                payload = None

    async def _send(
        self,
        method: str,
        path: str,
        version: int,
        body: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> APIResponse:
        request = APIRequest(
            method=method,
            path=path,
            headers={self.version_header: str(version), **(headers or {})},
            body=body,
        )
        try:
            # a mutation on the wire completes even if the caller is cancelled
            return await self.executor.execute(request, shield_send=True)
        except VersionConflictError as e:
            e.sent_version = version
            raise

    async def update(
        self,
        ref: ResourceRef,
        mutate_fn: MutateFn,
        max_retries: int | None = None,
        current: VersionedPayload | None = None,
    ) -> VersionedPayload:
        """
        Apply ``mutate_fn`` to the latest state of ``ref`` and save it.

        Args:
            ref: The resource to update.
            mutate_fn: Pure function from the fetched payload to the new data.
            max_retries: Conflict budget for this call.
            current: A payload fetched just before, to skip the first read.

        Returns:
            The payload the server stored, with its new version.

        Raises:
            VersionConflictExhaustedError: If every attempt conflicted.
        """

        async def _put(payload: VersionedPayload) -> VersionedPayload:
            desired = payload.with_data(mutate_fn(payload))
            response = await self._send(
                "PUT", ref.path, payload.version, self.codec.encode_data(desired)
            )
            return self._decode(response)

        return await self._with_conflict_retry(ref, _put, current, max_retries)

    async def _versioned_action(
        self,
        ref: ResourceRef,
        method: str,
        suffix: str = "",
        current: VersionedPayload | None = None,
        max_retries: int | None = None,
    ) -> VersionedPayload | None:
        async def _act(payload: VersionedPayload) -> VersionedPayload | None:
            response = await self._send(method, f"{ref.path}{suffix}", payload.version)
            return self._decode(response)

        return await self._with_conflict_retry(ref, _act, current, max_retries)

    async def publish(self, ref, current=None, max_retries=None):
        return await self._versioned_action(
            ref, "PUT", "/published", current, max_retries
        )

    async def unpublish(self, ref, current=None, max_retries=None):
        return await self._versioned_action(
            ref, "DELETE", "/published", current, max_retries
        )

    async def archive(self, ref, current=None, max_retries=None):
        return await self._versioned_action(
            ref, "PUT", "/archived", current, max_retries
        )

    async def unarchive(self, ref, current=None, max_retries=None):
        return await self._versioned_action(
            ref, "DELETE", "/archived", current, max_retries
        )

    async def delete(self, ref, current=None, max_retries=None) -> None:
        await self._versioned_action(ref, "DELETE", "", current, max_retries)

    async def process_asset_file(
        self, ref: ResourceRef, locale: str, current=None, max_retries=None
    ) -> None:
        """Ask the server to process the uploaded file of an asset for ``locale``."""
        await self._versioned_action(
            ref, "PUT", f"/files/{locale}/process", current, max_retries
        )
