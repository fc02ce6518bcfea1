# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Bounded-concurrency execution of independent operations.

This module provides BoundedBatchRunner, which applies one async operation
to many items with a cap on how many run at once, and reports the outcome
of every item without letting one failure stop the others.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from cmaclient.models import BatchResult, BatchStats

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)

__all__ = ("BoundedBatchRunner", "failures")


class BoundedBatchRunner:
    """
    Runs an operation over many items with at most ``concurrency`` in flight.

    A fixed pool of workers pulls items from one shared iterator: as soon
    as an operation finishes, its worker takes the next item, so a slow
    item never holds back the rest of a chunk. Results land in the slot of
    their input index.

    The cap applies per run. Every run keeps its own BatchStats, so one
    runner can serve several batches at the same time.

    Example:
        ```python
        runner = BoundedBatchRunner(concurrency=5)

        results, stats = await runner.run_with_stats(refs, mutator.publish)
        for result in failures(results):
            print(result.index, result.item, result.error)
        ```
    """

    def __init__(self, concurrency: int = 5):
        """
        Initialize the runner.

        Args:
            concurrency: Default maximum number of operations in flight.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.concurrency = concurrency
        self.last_stats: BatchStats | None = None
        self._active: dict[int, BatchStats] = {}

        logger.debug(f"Initialized BoundedBatchRunner with concurrency={concurrency}")

    @property
    def in_flight(self) -> int:
        """Operations currently running, across all active runs."""
        return sum(stats.in_flight for stats in self._active.values())

    @property
    def peak_in_flight(self) -> int:
        """Peak concurrency of the most recently finished run."""
        return self.last_stats.peak_in_flight if self.last_stats else 0

    async def _run_one(
        self,
        index: int,
        item: T,
        operation: Callable[[T], Awaitable[R]],
        stats: BatchStats,
    ) -> BatchResult:
        stats.in_flight += 1
        stats.peak_in_flight = max(stats.peak_in_flight, stats.in_flight)
        try:
            value = await operation(item)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Batch item {index} failed: {type(e).__name__}: {e}")
            stats.failed += 1
            return BatchResult(index=index, item=item, error=e)
        finally:
            stats.in_flight -= 1
        stats.succeeded += 1
        return BatchResult(index=index, item=item, value=value)

    async def run_with_stats(
        self,
        items: Iterable[T],
        operation: Callable[[T], Awaitable[R]],
        concurrency: int | None = None,
    ) -> tuple[list[BatchResult], BatchStats]:
        """
        Apply ``operation`` to every item.

        Args:
            items: Inputs of the batch.
            operation: Coroutine function applied to each item.
            concurrency: Overrides the runner's default for this call.

        Returns:
            One BatchResult per item in input order, and the counters of
            this run.
        """
        items = list(items)
        limit = concurrency if concurrency is not None else self.concurrency
        if limit < 1:
            raise ValueError("concurrency must be at least 1")

        stats = BatchStats(total=len(items), concurrency=limit)
        results: list[BatchResult | None] = [None] * len(items)
        pending = iter(enumerate(items))

        async def _worker() -> None:
            for index, item in pending:
                results[index] = await self._run_one(index, item, operation, stats)

        workers = [
            asyncio.create_task(_worker(), name=f"batch-worker-{n}")
            for n in range(min(limit, len(items)))
        ]
        logger.debug(f"Running {len(items)} items with {len(workers)} workers")

        self._active[id(stats)] = stats
        try:
            await asyncio.gather(*workers)
        except BaseException:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            raise
        finally:
            del self._active[id(stats)]

        self.last_stats = stats
        logger.info(
            f"Batch finished: {stats.succeeded} succeeded, {stats.failed} failed, "
            f"peak concurrency {stats.peak_in_flight}/{limit}"
        )
        return results, stats  # type: ignore[return-value]

    async def run(
        self,
        items: Iterable[T],
        operation: Callable[[T], Awaitable[R]],
        concurrency: int | None = None,
    ) -> list[BatchResult]:
        """Like ``run_with_stats``, returning only the results."""
        results, _ = await self.run_with_stats(items, operation, concurrency)
        return results

    async def map(
        self,
        operation: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        concurrency: int | None = None,
    ) -> list[R]:
        """Like ``run``, but return plain values and raise the first failure."""
        return [r.unwrap() for r in await self.run(items, operation, concurrency)]


def failures(results: Iterable[BatchResult]) -> list[BatchResult]:
    return [r for r in results if not r.ok]
