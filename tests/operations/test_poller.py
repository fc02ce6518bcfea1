# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the AsyncResourcePoller.
"""

import pytest
from support import SPACE, ScriptedTransport, make_response, resource

from cmaclient.clients.errors import PollFailedError, PollTimedOutError
from cmaclient.clients.executor import RequestExecutor
from cmaclient.models import PollSpec, PollState, ResourceRef
from cmaclient.operations.poller import (
    AsyncResourcePoller,
    asset_file_status,
    asset_processed_spec,
    environment_ready_spec,
)

ENV_REF = ResourceRef.environment(SPACE, "staging")
ASSET_REF = ResourceRef.asset(SPACE, "a1")


def environment(status, version=1):
    return make_response(
        200, resource("staging", version=version, type_="Environment", status=status)
    )


def asset(url=None):
    file = {"fileName": "cat.png", "contentType": "image/png"}
    if url:
        file["url"] = url
    else:
        file["upload"] = "https://upload.example.test/cat.png"
    return make_response(
        200, resource("a1", type_="Asset", fields={"file": {"en-US": file}})
    )


def make_poller(transport, config, clock):
    executor = RequestExecutor(transport, config, clock=clock, sleep=clock.sleep)
    return AsyncResourcePoller(executor, clock=clock, sleep=clock.sleep)


@pytest.mark.asyncio
async def test_poll_until_ready(config, clock):
    """Test that polling stops at the first terminal status."""
    transport = ScriptedTransport(
        environment("queued"), environment("creating"), environment("ready", 2)
    )
    poller = make_poller(transport, config, clock)

    result = await poller.poll(ENV_REF, environment_ready_spec(interval=1.0))

    assert result.state is PollState.READY
    assert result.status == "ready"
    assert result.attempts == 3
    assert result.payload.version == 2
    assert result.elapsed == 2.0
    assert clock.sleeps == [1.0, 1.0]
    assert all(c.url.endswith("/spaces/space1/environments/staging") for c in transport.calls)


@pytest.mark.asyncio
async def test_ready_on_first_tick_does_not_sleep(config, clock):
    """Test that an already finished resource costs one read and no sleep."""
    transport = ScriptedTransport(environment("ready"))
    poller = make_poller(transport, config, clock)

    result = await poller.poll(ENV_REF, environment_ready_spec())

    assert result.attempts == 1
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_poll_times_out_after_max_attempts(config, clock):
    """Test that polling gives up after the attempt bound."""
    transport = ScriptedTransport(environment("queued"), repeat_last=True)
    poller = make_poller(transport, config, clock)

    with pytest.raises(PollTimedOutError) as excinfo:
        await poller.poll(ENV_REF, environment_ready_spec(interval=0.5, max_attempts=3))

    assert len(transport.calls) == 3
    assert excinfo.value.attempts == 3
    assert excinfo.value.last_status == "queued"
    assert clock.sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_poll_times_out_after_max_duration(config, clock):
    """Test that polling gives up after the duration bound."""
    transport = ScriptedTransport(environment("queued"), repeat_last=True)
    poller = make_poller(transport, config, clock)
    spec = environment_ready_spec(interval=2.0, max_attempts=None, max_duration=5.0)

    with pytest.raises(PollTimedOutError) as excinfo:
        await poller.poll(ENV_REF, spec)

    # ticks at t=0, 2, 4 and 6
    assert excinfo.value.attempts == 4
    assert excinfo.value.elapsed == 6.0


@pytest.mark.asyncio
async def test_failure_state_raises_immediately(config, clock):
    """Test that a failure status ends polling with an error."""
    transport = ScriptedTransport(
        environment("queued"), environment("failureCreating"), environment("ready")
    )
    poller = make_poller(transport, config, clock)

    with pytest.raises(PollFailedError) as excinfo:
        await poller.poll(ENV_REF, environment_ready_spec(max_attempts=10))

    assert excinfo.value.status == "failureCreating"
    assert excinfo.value.payload.sys.id == "staging"
    assert len(transport.calls) == 2


@pytest.mark.asyncio
async def test_unknown_status_keeps_polling(config, clock):
    """Test that an unrecognised status counts as still in progress."""
    transport = ScriptedTransport(
        environment(None), environment("migrating"), environment("ready")
    )
    poller = make_poller(transport, config, clock)

    result = await poller.poll(ENV_REF, environment_ready_spec())

    assert result.attempts == 3


@pytest.mark.asyncio
async def test_asset_file_processing(config, clock):
    """Test polling an asset until its file is processed."""
    transport = ScriptedTransport(
        asset(), asset(), asset(url="//assets.example/a1/cat.png")
    )
    poller = make_poller(transport, config, clock)

    result = await poller.poll(
        ASSET_REF,
        asset_processed_spec(interval=0.25),
        status_of=asset_file_status("en-US"),
    )

    assert result.status == "ready"
    assert result.attempts == 3
    assert clock.sleeps == [0.25, 0.25]


@pytest.mark.asyncio
async def test_custom_spec_and_status_getter(config, clock):
    """Test polling with a caller-supplied spec and status getter."""
    transport = ScriptedTransport(
        make_response(200, resource("job1", type_="BulkAction", state="inProgress")),
        make_response(200, resource("job1", type_="BulkAction", state="succeeded")),
    )
    poller = make_poller(transport, config, clock)
    spec = PollSpec(
        terminal_states={"succeeded"},
        failure_states={"failed"},
        interval=0.1,
        max_attempts=5,
    )

    result = await poller.poll(
        ResourceRef(space_id=SPACE, resource_id="job1", resource_type="bulk_actions"),
        spec,
        status_of=lambda p: p.data["state"],
    )

    assert result.status == "succeeded"


def test_asset_file_status_missing_locale():
    """Test that a missing locale reads as no status."""
    status_of = asset_file_status("de-DE")

    class Payload:
        data = {"fields": {"file": {"en-US": {"url": "//x"}}}}

    assert status_of(Payload()) is None
