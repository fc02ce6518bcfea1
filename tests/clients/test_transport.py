# Copyright (c) 2025, HaiyangLi <quantocean.li at gmail dot com>
#
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the aiohttp transport.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from cmaclient.clients.errors import APIConnectionError, APITimeoutError
from cmaclient.clients.transport import AiohttpTransport


def mock_session(status=200, headers=None, body=b""):
    resp = MagicMock()
    resp.status = status
    resp.headers = headers or {}
    resp.read = AsyncMock(return_value=body)

    session = MagicMock()
    session.closed = False
    session.close = AsyncMock()
    session.request.return_value.__aenter__ = AsyncMock(return_value=resp)
    session.request.return_value.__aexit__ = AsyncMock(return_value=False)
    return session


@pytest.mark.asyncio
async def test_send_reads_response():
    """Test that send returns status, headers and body."""
    session = mock_session(
        status=201, headers={"X-Contentful-Request-Id": "r1"}, body=b'{"a": 1}'
    )
    transport = AiohttpTransport(session=session)

    response = await transport.send(
        "PUT", "https://api.example.test/x", {"a": "b"}, b"{}"
    )

    session.request.assert_called_once_with(
        "PUT", "https://api.example.test/x", headers={"a": "b"}, data=b"{}"
    )
    assert response.status == 201
    assert response.headers == {"x-contentful-request-id": "r1"}
    assert response.json() == {"a": 1}


@pytest.mark.asyncio
async def test_send_maps_timeout():
    """Test that a timeout becomes APITimeoutError."""
    session = mock_session()
    session.request.side_effect = asyncio.TimeoutError()
    transport = AiohttpTransport(timeout=5, session=session)

    with pytest.raises(APITimeoutError) as excinfo:
        await transport.send("GET", "https://api.example.test/x", {}, None)

    assert excinfo.value.transient
    assert isinstance(excinfo.value.__cause__, asyncio.TimeoutError)


@pytest.mark.asyncio
async def test_send_maps_client_error():
    """Test that an aiohttp client error becomes APIConnectionError."""
    session = mock_session()
    session.request.side_effect = aiohttp.ClientConnectionError("refused")
    transport = AiohttpTransport(session=session)

    with pytest.raises(APIConnectionError, match="refused"):
        await transport.send("GET", "https://api.example.test/x", {}, None)


@pytest.mark.asyncio
async def test_session_created_lazily_and_closed():
    """Test that an owned session is created on first use and closed."""
    session = mock_session()
    with patch("cmaclient.clients.transport.aiohttp.ClientSession") as factory:
        factory.return_value = session
        transport = AiohttpTransport(timeout=12)
        assert transport.session is None

        await transport.send("GET", "https://api.example.test/x", {}, None)
        await transport.send("GET", "https://api.example.test/y", {}, None)

        factory.assert_called_once()
        assert factory.call_args.kwargs["timeout"].total == 12

        await transport.aclose()

    session.close.assert_awaited_once()
    assert transport.session is None


@pytest.mark.asyncio
async def test_borrowed_session_is_not_closed():
    """Test that a session passed in is left open."""
    session = mock_session()

    async with AiohttpTransport(session=session) as transport:
        await transport.send("GET", "https://api.example.test/x", {}, None)

    session.close.assert_not_called()
