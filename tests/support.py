# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Test doubles: a fake clock, a scripted transport and an in-memory
version-locked resource server.
"""

import asyncio
from types import SimpleNamespace
from typing import Any
from urllib.parse import urlparse

import orjson

from cmaclient.models import APIResponse

SPACE = "space1"
ENV = "master"


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def make_response(
    status: int = 200, json: Any = None, headers: dict[str, str] | None = None
) -> APIResponse:
    body = orjson.dumps(json) if json is not None else b""
    return APIResponse(status=status, headers=headers or {}, body=body)


def resource(
    resource_id: str = "entry1",
    version: int = 1,
    type_: str = "Entry",
    status: str | None = None,
    **data: Any,
) -> dict[str, Any]:
    sys: dict[str, Any] = {"id": resource_id, "type": type_, "version": version}
    if status is not None:
        sys["status"] = {"sys": {"id": status, "type": "Link", "linkType": "Status"}}
    return {"sys": sys, **data}


class ScriptedTransport:
    """Returns the scripted responses (or raises scripted errors) in order."""

    def __init__(self, *responses: Any, repeat_last: bool = False):
        self.responses = list(responses)
        self.repeat_last = repeat_last
        self.calls: list[SimpleNamespace] = []

    async def send(self, method, url, headers, body):
        self.calls.append(
            SimpleNamespace(method=method, url=url, headers=dict(headers), body=body)
        )
        await asyncio.sleep(0)
        if not self.responses:
            raise AssertionError(f"No scripted response left for {method} {url}")
        if self.repeat_last and len(self.responses) == 1:
            nxt = self.responses[0]
        else:
            nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


class InMemoryServer:
    """
    Version-locked resource store speaking the management API's protocol.

    Mutations must send ``X-Contentful-Version`` equal to the stored
    version, otherwise they get a 409.
    """

    VERSION = "x-contentful-version"

    def __init__(self):
        self.resources: dict[str, dict[str, Any]] = {}
        self.requests: list[SimpleNamespace] = []
        self.interfere: set[str] = set()
        self.ready_after: dict[str, int] = {}
        self.failing: dict[str, Exception] = {}

    def put(self, path: str, body: dict[str, Any]) -> None:
        self.resources[path] = body

    def _json(self, status: int, body: Any = None) -> APIResponse:
        return make_response(status, body, {"x-contentful-request-id": "req-1"})

    def _error(self, status: int, error_id: str, message: str) -> APIResponse:
        return self._json(
            status, {"sys": {"type": "Error", "id": error_id}, "message": message}
        )

    def _bump(self, res: dict[str, Any]) -> None:
        res["sys"]["version"] += 1

    def _check_version(self, path: str, headers: dict[str, str]) -> APIResponse | None:
        res = self.resources.get(path)
        if res is None:
            return self._error(404, "NotFound", "The resource could not be found.")
        sent = headers.get(self.VERSION)
        if sent is None or int(sent) != res["sys"]["version"]:
            return self._error(409, "VersionMismatch", "Version mismatch")
        return None

    def _on_get(self, path: str, res: dict[str, Any]) -> None:
        if path in self.ready_after:
            self.ready_after[path] -= 1
            if self.ready_after[path] <= 0:
                del self.ready_after[path]
                self._complete(res)

    def _complete(self, res: dict[str, Any]) -> None:
        if res["sys"]["type"] == "Environment":
            res["sys"]["status"] = {"sys": {"id": "ready", "type": "Link"}}
        else:
            for file in res.get("fields", {}).get("file", {}).values():
                file["url"] = f"//assets.example/{res['sys']['id']}/{file['fileName']}"

    async def send(self, method, url, headers, body):
        path = urlparse(url).path
        headers = {k.lower(): v for k, v in headers.items()}
        self.requests.append(
            SimpleNamespace(
                method=method, path=path, version=headers.get(self.VERSION), body=body
            )
        )
        await asyncio.sleep(0)

        if path in self.failing:
            raise self.failing[path]

        if method == "GET":
            res = self.resources.get(path)
            if res is None:
                return self._error(404, "NotFound", "The resource could not be found.")
            self._on_get(path, res)
            response = self._json(200, res)
            if path in self.interfere:
                self._bump(res)
            return response

        for suffix in ("/published", "/archived"):
            if path.endswith(suffix):
                return self._toggle(method, path[: -len(suffix)], suffix, headers)

        if "/files/" in path and path.endswith("/process"):
            target = path.split("/files/")[0]
            problem = self._check_version(target, headers)
            if problem:
                return problem
            self.ready_after.setdefault(target, 2)
            return self._json(204)

        if method == "PUT":
            data = orjson.loads(body) if body else {}
            res = self.resources.get(path)
            if res is None:
                type_ = "Environment" if path.count("/") == 4 else "Entry"
                res = {"sys": {"id": path.rsplit("/", 1)[-1], "type": type_, "version": 1}}
                if type_ == "Environment":
                    res["sys"]["status"] = {"sys": {"id": "queued", "type": "Link"}}
                    self.ready_after.setdefault(path, 2)
                res.update(data)
                self.resources[path] = res
                return self._json(201, res)
            problem = self._check_version(path, headers)
            if problem:
                return problem
            self.resources[path] = {"sys": res["sys"], **data}
            self._bump(res)
            return self._json(200, self.resources[path])

        if method == "DELETE":
            problem = self._check_version(path, headers)
            if problem:
                return problem
            del self.resources[path]
            return self._json(204)

        return self._error(405, "MethodNotAllowed", method)

    def _toggle(self, method, path, suffix, headers):
        problem = self._check_version(path, headers)
        if problem:
            return problem
        res = self.resources[path]
        key = "publishedVersion" if suffix == "/published" else "archivedVersion"
        if method == "PUT":
            res["sys"][key] = res["sys"]["version"]
        else:
            res["sys"].pop(key, None)
        self._bump(res)
        return self._json(200, res)


