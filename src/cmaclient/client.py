# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Client facade for the content management API.

ManagementClient wires a transport, the request executor, the payload
codec, the versioned mutator, the poller and the batch runner from one
ClientConfig, and exposes the resource operations built on them.
"""

import logging
from collections.abc import Iterable
from typing import Any

from typing_extensions import Self

from cmaclient.clients.executor import RequestExecutor
from cmaclient.clients.protocols import Clock, RequestObserver, Sleep, Transport
from cmaclient.clients.transport import AiohttpTransport
from cmaclient.codec import PayloadCodec
from cmaclient.config import ClientConfig
from cmaclient.models import (
    APIRequest,
    BatchResult,
    PollResult,
    ResourceRef,
    VersionedPayload,
)
from cmaclient.operations.batch import BoundedBatchRunner
from cmaclient.operations.mutator import MutateFn, VersionedMutator
from cmaclient.operations.poller import (
    AsyncResourcePoller,
    asset_file_status,
    asset_processed_spec,
    environment_ready_spec,
)

logger = logging.getLogger(__name__)

__all__ = ("ManagementClient",)


class ManagementClient:
    """
    Resilient client for a versioned, rate-limited management API.

    Example:
        ```python
        config = ClientConfig(access_token="CFPAT-...", rate_limit="80%")

        async with ManagementClient(config) as client:
            ref = ResourceRef.entry("space", "entry-id")
            entry = await client.update(ref, lambda p: {**p.data, "metadata": {}})
            await client.publish(ref, current=entry)
        ```
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: Transport | None = None,
        codec: PayloadCodec | None = None,
        observers: Iterable[RequestObserver] = (),
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ):
        self.config = config if config is not None else ClientConfig()
        self._owns_transport = transport is None
        self.transport = transport or AiohttpTransport(timeout=self.config.timeout)
        self.codec = codec or PayloadCodec()
        self.executor = RequestExecutor(
            self.transport,
            self.config,
            observers=observers,
            clock=clock,
            sleep=sleep,
        )
        self.mutator = VersionedMutator(self.executor, self.codec)
        self.poller = AsyncResourcePoller(
            self.executor, self.codec, clock=clock, sleep=sleep
        )
        self.batch = BoundedBatchRunner(self.config.batch_concurrency)

    async def get(self, ref: ResourceRef) -> VersionedPayload:
        return await self.mutator.fetch(ref)

    async def create(self, ref: ResourceRef, data: dict[str, Any]) -> VersionedPayload:
        """Create the resource under the id of ``ref``."""
        response = await self.executor.execute(
            APIRequest.with_json("PUT", ref.path, data)
        )
        return self.codec.decode(response.body)

    async def update(
        self,
        ref: ResourceRef,
        mutate_fn: MutateFn,
        max_retries: int | None = None,
        current: VersionedPayload | None = None,
    ) -> VersionedPayload:
        return await self.mutator.update(ref, mutate_fn, max_retries, current)

    async def publish(self, ref, current=None, max_retries=None):
        return await self.mutator.publish(ref, current, max_retries)

    async def unpublish(self, ref, current=None, max_retries=None):
        return await self.mutator.unpublish(ref, current, max_retries)

    async def archive(self, ref, current=None, max_retries=None):
        return await self.mutator.archive(ref, current, max_retries)

    async def unarchive(self, ref, current=None, max_retries=None):
        return await self.mutator.unarchive(ref, current, max_retries)

    async def delete(self, ref, current=None, max_retries=None) -> None:
        await self.mutator.delete(ref, current, max_retries)

    async def create_environment(
        self,
        space_id: str,
        environment_id: str,
        name: str | None = None,
        source_environment_id: str | None = None,
        wait: bool = True,
    ) -> VersionedPayload | PollResult:
        """
        Create (clone) an environment, waiting for it to become ready.

        Returns:
            The PollResult when ``wait`` is set, else the accepted payload.
        """
        ref = ResourceRef.environment(space_id, environment_id)
        headers = {}
        if source_environment_id:
            headers[self.config.source_environment_header] = source_environment_id
        response = await self.executor.execute(
            APIRequest.with_json(
                "PUT", ref.path, {"name": name or environment_id}, headers=headers
            )
        )
        created = self.codec.decode(response.body)
        if not wait:
            return created
        logger.info(f"Waiting for environment {environment_id} to become ready")
        return await self.poller.poll(
            ref,
            environment_ready_spec(
                interval=self.config.poll_interval,
                max_attempts=self.config.poll_max_attempts,
                max_duration=self.config.poll_max_duration,
            ),
        )

    async def process_asset(
        self,
        ref: ResourceRef,
        locale: str,
        current: VersionedPayload | None = None,
        wait: bool = True,
    ) -> PollResult | None:
        """Trigger processing of an asset file and wait until it has a URL."""
        await self.mutator.process_asset_file(ref, locale, current)
        if not wait:
            return None
        return await self.poller.poll(
            ref,
            asset_processed_spec(
                interval=self.config.poll_interval,
                max_attempts=self.config.poll_max_attempts,
                max_duration=self.config.poll_max_duration,
            ),
            status_of=asset_file_status(locale),
        )

    async def bulk_publish(
        self, refs: Iterable[ResourceRef], concurrency: int | None = None
    ) -> list[BatchResult]:
        return await self.batch.run(refs, self.mutator.publish, concurrency)

    async def bulk_update(
        self,
        refs: Iterable[ResourceRef],
        mutate_fn: MutateFn,
        concurrency: int | None = None,
    ) -> list[BatchResult]:
        async def _update(ref: ResourceRef) -> VersionedPayload:
            return await self.mutator.update(ref, mutate_fn)

        return await self.batch.run(refs, _update, concurrency)

    async def aclose(self) -> None:
        if self._owns_transport and hasattr(self.transport, "aclose"):
            await self.transport.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
