# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the BoundedBatchRunner.
"""

import asyncio

import pytest

from cmaclient.clients.errors import ServerError
from cmaclient.operations.batch import BoundedBatchRunner, failures


@pytest.mark.asyncio
async def test_run_bounds_concurrency_and_keeps_order():
    """Test that a run stays under the cap and reports every item in order."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=5)
    failing = {7, 42, 99}

    async def operation(n):
        await asyncio.sleep(0.001 * (n % 3))
        if n in failing:
            raise ServerError(f"item {n}", status_code=503)
        return n * 2

    # Act
    results, stats = await runner.run_with_stats(range(100), operation)

    # Assert
    assert len(results) == 100
    assert 1 < stats.peak_in_flight <= 5
    assert runner.peak_in_flight == stats.peak_in_flight
    assert runner.in_flight == 0
    assert (stats.total, stats.succeeded, stats.failed) == (100, 97, 3)
    assert [r.index for r in results] == list(range(100))
    assert {r.index for r in failures(results)} == failing
    assert all(r.value == r.index * 2 for r in results if r.ok)
    assert isinstance(results[42].error, ServerError)


@pytest.mark.asyncio
async def test_free_slot_is_refilled_immediately():
    """Test that a finished item frees its slot for the next one at once."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=2)
    slow = asyncio.Event()
    order = []

    async def operation(item):
        order.append(("start", item))
        if item == "slow":
            await slow.wait()
        else:
            await asyncio.sleep(0)
        order.append(("end", item))
        if item == "c":
            slow.set()
        return item

    # Act
    results = await runner.run(["slow", "a", "b", "c"], operation)

    # Assert
    # a, b and c all went through the second slot while "slow" held the first
    assert order.index(("end", "c")) < order.index(("end", "slow"))
    assert [r.value for r in results] == ["slow", "a", "b", "c"]
    assert runner.peak_in_flight == 2


@pytest.mark.asyncio
async def test_concurrency_override():
    """Test that a per-call concurrency replaces the runner default."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=5)

    async def operation(item):
        await asyncio.sleep(0)
        return item

    # Act
    _, stats = await runner.run_with_stats(range(10), operation, concurrency=1)

    # Assert
    assert stats.concurrency == 1
    assert stats.peak_in_flight == 1


@pytest.mark.asyncio
async def test_concurrent_runs_keep_separate_counters():
    """Test that two batches on one runner are each capped on their own."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=5)
    seen_in_flight = []

    async def operation(item):
        seen_in_flight.append(runner.in_flight)
        await asyncio.sleep(0.001)
        return item

    # Act
    (first, first_stats), (second, second_stats) = await asyncio.gather(
        runner.run_with_stats(range(20), operation),
        runner.run_with_stats(range(20), operation),
    )

    # Assert
    assert first_stats is not second_stats
    assert first_stats.peak_in_flight == 5
    assert second_stats.peak_in_flight == 5
    assert first_stats.succeeded == second_stats.succeeded == 20
    # the runner-wide gauge spans both runs
    assert max(seen_in_flight) == 10
    assert runner.peak_in_flight <= 5
    assert runner.in_flight == 0
    assert [r.value for r in first] == [r.value for r in second] == list(range(20))


@pytest.mark.asyncio
async def test_empty_batch():
    """Test that an empty batch returns no results and starts no workers."""
    # Arrange
    runner = BoundedBatchRunner()

    async def operation(item):
        return item

    # Act
    results, stats = await runner.run_with_stats([], operation)

    # Assert
    assert results == []
    assert stats.peak_in_flight == 0


@pytest.mark.asyncio
async def test_cancellation_stops_all_workers():
    """Test that cancelling a run cancels every operation in flight."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=3)
    started = []
    cancelled = []

    async def operation(item):
        started.append(item)
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(item)
            raise

    task = asyncio.create_task(runner.run(range(10), operation))
    while len(started) < 3:
        await asyncio.sleep(0)

    # Act
    task.cancel()

    # Assert
    with pytest.raises(asyncio.CancelledError):
        await task
    assert sorted(cancelled) == [0, 1, 2]
    assert len(started) == 3
    assert runner.in_flight == 0


@pytest.mark.asyncio
async def test_map_returns_values_or_raises_first_failure():
    """Test that map unwraps values and raises the first captured error."""
    # Arrange
    runner = BoundedBatchRunner(concurrency=2)

    async def double(n):
        return n * 2

    async def boom(n):
        if n == 3:
            raise ValueError("three")
        return n

    # Act & Assert
    assert await runner.map(double, [1, 2, 3]) == [2, 4, 6]
    with pytest.raises(ValueError, match="three"):
        await runner.map(boom, range(5))


def test_invalid_concurrency():
    """Test that a concurrency below one is rejected."""
    with pytest.raises(ValueError):
        BoundedBatchRunner(concurrency=0)
