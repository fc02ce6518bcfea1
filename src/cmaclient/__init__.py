# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Resilient async client core for a versioned, rate-limited content
management API.
"""

from .client import ManagementClient
from .codec import PayloadCodec
from .config import ClientConfig
from .models import (
    APIRequest,
    APIResponse,
    BatchResult,
    BatchStats,
    PollResult,
    PollSpec,
    PollState,
    ResourceRef,
    Sys,
    VersionedPayload,
)
from .operations import AsyncResourcePoller, BoundedBatchRunner, VersionedMutator

__version__ = "0.1.0"

__all__ = [
    "APIRequest",
    "APIResponse",
    "AsyncResourcePoller",
    "BatchResult",
    "BatchStats",
    "BoundedBatchRunner",
    "ClientConfig",
    "ManagementClient",
    "PayloadCodec",
    "PollResult",
    "PollSpec",
    "PollState",
    "ResourceRef",
    "Sys",
    "VersionedMutator",
    "VersionedPayload",
]
