"""Pytest configuration and fixtures for tee_bridge tests."""

from __future__ import annotations

import shutil
import tempfile
from collections.abc import AsyncIterator, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from .mock_enclave import MockEnclave


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: Any = None,
    text_data: str | None = None,
    json_error: Exception | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call
        text_data: Data to return from text() call
        json_error: Exception raised by json() instead of returning data

    Returns:
        Configured AsyncMock response usable as ``async with`` target
    """
    response = AsyncMock()
    response.status = status

    if json_error is not None:
        response.json.side_effect = json_error
    elif json_data is not None:
        response.json.return_value = json_data
    if text_data is not None:
        response.text.return_value = text_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


@pytest.fixture
def socket_path() -> Iterator[str]:
    """Short Unix socket path (AF_UNIX paths are limited to ~108 bytes)."""
    directory = tempfile.mkdtemp(prefix="teeb-")
    yield str(Path(directory) / "enclave.sock")
    shutil.rmtree(directory, ignore_errors=True)


@pytest.fixture
async def enclave(socket_path: str) -> AsyncIterator[MockEnclave]:
    """Running mock enclave that echoes every request."""
    server = MockEnclave(socket_path)
    await server.start()
    yield server
    await server.stop()
