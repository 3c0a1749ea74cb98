"""asyncio protocol carrying length-prefixed frames over the enclave socket."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import cast

from ..errors import BridgeError, FrameTooLargeError, TransportIOError
from ..protocol import DEFAULT_MAX_FRAME_SIZE, FrameDecoder

_LOGGER = logging.getLogger(__name__)


class FrameProtocol(asyncio.Protocol):
    """Reassembles frames from arbitrarily fragmented socket reads.

    Completed payloads are queued in arrival order and handed out by
    ``read_frame``. Only one reader and one writer may wait at a time.
    """

    def __init__(
        self,
        *,
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
        on_lost: Callable[[FrameProtocol, Exception | None], None] | None = None,
    ) -> None:
        self._decoder = FrameDecoder(max_frame_size=max_frame_size)
        self._on_lost = on_lost
        self._transport: asyncio.Transport | None = None
        self._frames: deque[bytes] = deque()
        self._read_waiter: asyncio.Future[None] | None = None
        self._drain_waiter: asyncio.Future[None] | None = None
        self._paused = False
        self._error: BridgeError | None = None
        self._closed: asyncio.Future[None] = (
            asyncio.get_running_loop().create_future()
        )

    # -------------------------------------------------------------------------
    # asyncio.Protocol callbacks
    # -------------------------------------------------------------------------

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self._transport = cast(asyncio.Transport, transport)

    def data_received(self, data: bytes) -> None:
        if self._error is not None:
            return
        try:
            frames = self._decoder.feed(data)
        except FrameTooLargeError as err:
            _LOGGER.error("Dropping enclave connection: %s", err)
            self._fail(err)
            if self._transport is not None:
                self._transport.abort()
            return
        if frames:
            self._frames.extend(frames)
            self._wake(self._read_waiter)

    def eof_received(self) -> bool:
        # Returning False lets the transport close itself.
        return False

    def connection_lost(self, exc: Exception | None) -> None:
        if self._error is None:
            if self._decoder.at_boundary:
                message = "Connection closed by enclave"
            else:
                message = (
                    f"Connection closed by enclave mid-frame "
                    f"({self._decoder.buffered} bytes pending)"
                )
            if exc is not None:
                message = f"{message}: {exc}"
            self._fail(TransportIOError(message))
        if not self._closed.done():
            self._closed.set_result(None)
        if self._on_lost is not None:
            self._on_lost(self, exc)

    def pause_writing(self) -> None:
        self._paused = True

    def resume_writing(self) -> None:
        self._paused = False
        self._wake(self._drain_waiter)

    # -------------------------------------------------------------------------
    # Frame I/O
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        """True while the socket is usable for a new exchange."""
        return (
            self._error is None
            and self._transport is not None
            and not self._transport.is_closing()
        )

    async def write_frame(self, frame: bytes) -> None:
        """Write one encoded frame as a single transport write.

        Raises:
            TransportIOError: If the connection is closed or fails while
                the write is draining.
        """
        if self._error is not None:
            raise self._error
        if self._transport is None or self._transport.is_closing():
            raise TransportIOError("Connection to enclave is closed")
        try:
            self._transport.write(frame)
        except (OSError, RuntimeError) as err:
            raise TransportIOError(f"Write failed: {err}") from err
        if self._paused:
            self._drain_waiter = asyncio.get_running_loop().create_future()
            try:
                await self._drain_waiter
            finally:
                self._drain_waiter = None
        if self._error is not None:
            raise self._error

    async def read_frame(self) -> bytes:
        """Wait for the next complete frame payload.

        There is no read deadline: the call returns only when a whole frame
        has arrived or the connection fails.

        Raises:
            TransportIOError: If the connection closes before a frame completes.
        """
        while not self._frames:
            if self._error is not None:
                raise self._error
            self._read_waiter = asyncio.get_running_loop().create_future()
            try:
                await self._read_waiter
            finally:
                self._read_waiter = None
        return self._frames.popleft()

    @property
    def pending_frames(self) -> int:
        """Complete frames received but not yet read."""
        return len(self._frames)

    def close(self) -> None:
        if self._transport is not None and not self._transport.is_closing():
            self._transport.close()

    async def wait_closed(self) -> None:
        await asyncio.shield(self._closed)

    def _fail(self, error: BridgeError) -> None:
        self._error = error
        self._wake(self._read_waiter)
        self._wake(self._drain_waiter)

    @staticmethod
    def _wake(waiter: asyncio.Future[None] | None) -> None:
        if waiter is not None and not waiter.done():
            waiter.set_result(None)
