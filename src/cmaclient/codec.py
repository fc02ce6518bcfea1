# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Payload codec between response bodies and VersionedPayload.

Resources travel as one JSON object holding ``sys`` next to the resource
fields (``fields``, ``name``, ``metadata``, ...). The codec splits that
object into the observed ``sys`` and the data, and joins them back.
"""

from typing import Any, Generic, TypeVar

import orjson
from pydantic import BaseModel

from cmaclient.models import Sys, VersionedPayload

T = TypeVar("T")

__all__ = ("PayloadCodec",)


class PayloadCodec(Generic[T]):
    """
    Decode and encode resource bodies.

    Args:
        data_model: Optional pydantic model the data part is validated
            into. Without it, data stays a plain dict.
    """

    def __init__(self, data_model: type[BaseModel] | None = None):
        self.data_model = data_model

    def from_dict(self, obj: dict[str, Any]) -> VersionedPayload:
        if not isinstance(obj, dict) or "sys" not in obj:
            raise ValueError("Resource body must be a JSON object with a 'sys' key")
        rest = {k: v for k, v in obj.items() if k != "sys"}
        data = self.data_model.model_validate(rest) if self.data_model else rest
        return VersionedPayload[Any](sys=Sys.model_validate(obj["sys"]), data=data)

    def decode(self, body: bytes) -> VersionedPayload:
        return self.from_dict(orjson.loads(body))

    def data_to_dict(self, payload: VersionedPayload) -> dict[str, Any]:
        data = payload.data
        if isinstance(data, BaseModel):
            return data.model_dump(mode="json", by_alias=True, exclude_unset=True)
        return dict(data)

    def to_dict(self, payload: VersionedPayload) -> dict[str, Any]:
        return {"sys": payload.sys.to_wire(), **self.data_to_dict(payload)}

    def encode(self, payload: VersionedPayload) -> bytes:
        """Full representation, ``sys`` included."""
        return orjson.dumps(self.to_dict(payload))

    def encode_data(self, payload: VersionedPayload) -> bytes:
        """Request body for a mutation: the data without ``sys``."""
        return orjson.dumps(self.data_to_dict(payload))
