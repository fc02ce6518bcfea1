# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""Operations built on the request executor."""

from .batch import BoundedBatchRunner, failures
from .mutator import VersionedMutator
from .poller import (
    AsyncResourcePoller,
    asset_file_status,
    asset_processed_spec,
    environment_ready_spec,
)

__all__ = [
    "AsyncResourcePoller",
    "BoundedBatchRunner",
    "VersionedMutator",
    "asset_file_status",
    "asset_processed_spec",
    "environment_ready_spec",
    "failures",
]
