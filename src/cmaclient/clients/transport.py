# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""aiohttp-backed Transport."""

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp
from typing_extensions import Self

from cmaclient.models import APIResponse

from .errors import APIConnectionError, APITimeoutError

logger = logging.getLogger(__name__)

__all__ = ("AiohttpTransport",)


class AiohttpTransport:
    """
    Sends requests over one shared ``aiohttp.ClientSession``.

    The session is created on first use and reused for every request. A
    session passed in by the caller is never closed by the transport.

    Example:
        ```python
        async with AiohttpTransport(timeout=30) as transport:
            response = await transport.send("GET", url, headers, None)
        ```
    """

    def __init__(
        self,
        timeout: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @property
    def session(self) -> aiohttp.ClientSession | None:
        return self._session

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
    ) -> APIResponse:
        session = self._get_session()
        try:
            async with session.request(
                method, url, headers=dict(headers), data=body
            ) as resp:
                payload = await resp.read()
                return APIResponse(
                    status=resp.status, headers=dict(resp.headers), body=payload
                )
        except asyncio.TimeoutError as e:
            logger.warning(f"{method} {url} timed out after {self.timeout}s")
            raise APITimeoutError(f"Request timed out: {method} {url}") from e
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise APIConnectionError(f"Connection error: {e}") from e

    async def aclose(self) -> None:
        """Close the session if this transport created it."""
        if self._owns_session and self._session is not None:
            if not self._session.closed:
                await self._session.close()
        self._session = None

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
