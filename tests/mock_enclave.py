"""In-process mock enclave listening on a Unix socket.

Speaks the length-prefixed JSON protocol. Responses can be dribbled out in
small chunks to exercise reassembly on the client side.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from collections.abc import Callable
from typing import Any

from tee_bridge.protocol import FrameDecoder, encode_frame

# Handler return value that makes the enclave close the connection.
DROP = object()

Handler = Callable[[dict[str, Any], int], Any]


def echo_handler(request: dict[str, Any], connection: int) -> dict[str, Any]:
    """Answer every request successfully, echoing method and params."""
    return {
        "id": request["id"],
        "success": True,
        "data": {"method": request["method"], "params": request["params"]},
    }


class MockEnclave:
    """Scriptable enclave server.

    The handler receives each decoded request and the 1-based connection
    number. It returns a response dict, raw frame bytes, ``None`` for no
    reply, or ``DROP`` to close the connection.
    """

    def __init__(
        self,
        socket_path: str,
        *,
        handler: Handler = echo_handler,
        chunk_size: int | None = None,
        chunk_delay: float = 0.0,
    ) -> None:
        self.socket_path = socket_path
        self.handler = handler
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.requests: list[dict[str, Any]] = []
        self.connections = 0
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._connected = asyncio.Event()

    async def start(self) -> None:
        if os.path.exists(self.socket_path):
            os.unlink(self.socket_path)
        self._server = await asyncio.start_unix_server(
            self._handle_connection, path=self.socket_path
        )

    async def stop(self) -> None:
        self.drop_connections()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        with contextlib.suppress(FileNotFoundError):
            os.unlink(self.socket_path)

    async def wait_connected(self, timeout: float = 2.0) -> None:
        """Wait until the enclave side has registered a client connection."""
        await asyncio.wait_for(self._connected.wait(), timeout)

    def drop_connections(self) -> None:
        """Close every open client connection from the enclave side."""
        for writer in list(self._writers):
            writer.close()
        self._writers.clear()

    async def _handle_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        self.connections += 1
        connection = self.connections
        self._writers.add(writer)
        self._connected.set()
        decoder = FrameDecoder()
        try:
            while True:
                data = await reader.read(4096)
                if not data:
                    return
                for payload in decoder.feed(data):
                    request = json.loads(payload)
                    self.requests.append(request)
                    reply = self.handler(request, connection)
                    if reply is None:
                        continue
                    if reply is DROP:
                        return
                    raw = reply if isinstance(reply, bytes) else encode_frame(reply)
                    await self._write(writer, raw)
        except (ConnectionError, asyncio.CancelledError):
            return
        finally:
            self._writers.discard(writer)
            writer.close()

    async def _write(self, writer: asyncio.StreamWriter, raw: bytes) -> None:
        if self.chunk_size is None:
            writer.write(raw)
            await writer.drain()
            return
        for start in range(0, len(raw), self.chunk_size):
            writer.write(raw[start : start + self.chunk_size])
            await writer.drain()
            await asyncio.sleep(self.chunk_delay)
