# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

import pytest
from support import FakeClock, InMemoryServer

from cmaclient.config import ClientConfig


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        host="https://api.example.test",
        access_token="test-token",
        rate_limit=1000,
        base_delay=0.1,
        max_delay=5.0,
        poll_interval=0.5,
        poll_max_attempts=5,
    )


@pytest.fixture
def server() -> InMemoryServer:
    return InMemoryServer()
