"""Enclave transport client.

Owns exactly one socket connection to the enclave and exchanges one request
frame for one response frame at a time. The wire protocol carries no
multiplexing, so a single instance must never have two ``send()`` calls in
flight; callers that need concurrency serialize access or open independent
clients.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from types import TracebackType

from ..errors import (
    FrameTooLargeError,
    TransportConnectError,
    TransportIOError,
    TransportParseError,
)
from ..protocol import (
    DEFAULT_MAX_FRAME_SIZE,
    TeeRequest,
    TeeResponse,
    decode_payload,
    encode_frame,
)
from ..retry import RetryPolicy, retry_with_backoff
from .connection import EnclaveAddress, open_connection
from .stream import FrameProtocol

_LOGGER = logging.getLogger(__name__)

CLOSE_TIMEOUT = 2.0


class ConnectionState(Enum):
    """Lifecycle of the enclave connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ReconnectStrategy:
    """How ``send()`` recovers from a lost connection.

    Attributes:
        max_reconnects: Fresh connects allowed after an I/O failure within a
            single ``send()``. Each is followed by one resend of the request.
        connect_if_disconnected: Connect before sending when the client is
            not connected, instead of failing immediately.
    """

    max_reconnects: int = 1
    connect_if_disconnected: bool = True

    def __post_init__(self) -> None:
        if self.max_reconnects < 0:
            raise ValueError("max_reconnects must not be negative")


NO_RECONNECT = ReconnectStrategy(max_reconnects=0, connect_if_disconnected=False)


class EnclaveClient:
    """Length-prefixed JSON client for the enclave socket.

    Usage:
        client = EnclaveClient(UnixSocketAddress("/tmp/enclave.sock"))
        await client.connect()
        response = await client.send(build_request("get_public_key"))
        await client.disconnect()
    """

    def __init__(
        self,
        address: EnclaveAddress,
        *,
        timeout: float = 30.0,
        retry_attempts: int = 5,
        retry_delay: float = 0.1,
        backoff_multiplier: float = 2.0,
        reconnect: ReconnectStrategy = ReconnectStrategy(),
        max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
    ) -> None:
        """Initialize client.

        Args:
            address: Unix socket or vsock address of the enclave
            timeout: Per-attempt connect timeout (seconds)
            retry_attempts: Connect attempts before giving up
            retry_delay: Delay after the first failed connect (seconds)
            backoff_multiplier: Growth factor for the connect delay
            reconnect: Recovery policy applied by ``send()``
            max_frame_size: Largest frame accepted in either direction
        """
        self._address = address
        self._timeout = timeout
        self._retry_policy = RetryPolicy(
            max_attempts=retry_attempts,
            initial_delay=retry_delay,
            backoff_multiplier=backoff_multiplier,
        )
        self._reconnect = reconnect
        self._max_frame_size = max_frame_size

        self._protocol: FrameProtocol | None = None
        self._state = ConnectionState.DISCONNECTED
        self._send_in_progress = False
        self._closed_by_caller = False

    @property
    def address(self) -> EnclaveAddress:
        return self._address

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the client holds a live enclave connection."""
        return self._state is ConnectionState.CONNECTED

    async def __aenter__(self) -> EnclaveClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to the enclave, retrying with exponential backoff.

        Any previously held connection is discarded first.

        Raises:
            TransportConnectError: The error from the final attempt.
        """
        self._closed_by_caller = False
        _LOGGER.info("Connecting to enclave at %s", self._address)
        await retry_with_backoff(
            self._connect_once,
            self._retry_policy,
            on_retry=self._log_connect_retry,
            retry_on=(TransportConnectError,),
        )
        _LOGGER.info("Connected to enclave at %s", self._address)

    async def disconnect(self) -> None:
        """Close the connection. Safe to call when already disconnected.

        A ``send()`` still waiting for its response fails with
        ``TransportIOError`` instead of reconnecting.
        """
        self._closed_by_caller = True
        had_connection = self._protocol is not None
        await self._discard_connection()
        self._set_state(ConnectionState.DISCONNECTED)
        if had_connection:
            _LOGGER.info("Disconnected from enclave")

    # -------------------------------------------------------------------------
    # Public API: Requests
    # -------------------------------------------------------------------------

    async def send(self, request: TeeRequest) -> TeeResponse:
        """Send one request frame and wait for the next response frame.

        The response is returned even if its id differs from the request id.

        Raises:
            TransportIOError: If the connection is unavailable or fails and
                the reconnect strategy is exhausted, or if another send is
                already in progress.
            TransportParseError: If the response frame is not valid JSON.
            TransportConnectError: If a reconnect attempt fails.
        """
        if self._send_in_progress:
            raise TransportIOError("Another send is already in progress")
        self._send_in_progress = True
        try:
            return await self._send(request)
        finally:
            self._send_in_progress = False

    async def _send(self, request: TeeRequest) -> TeeResponse:
        frame = encode_frame(request, max_frame_size=self._max_frame_size)

        if not self.is_connected:
            if not self._reconnect.connect_if_disconnected:
                raise TransportIOError("Not connected to enclave")
            await self.connect()

        _LOGGER.debug(
            "Sending request to enclave: id=%s method=%s", request.id, request.method
        )

        reconnects = 0
        while True:
            try:
                payload = await self._exchange(frame)
                break
            except FrameTooLargeError:
                await self._discard_connection()
                self._set_state(ConnectionState.DISCONNECTED)
                raise
            except TransportIOError as err:
                await self._discard_connection()
                self._set_state(ConnectionState.DISCONNECTED)
                if (
                    self._closed_by_caller
                    or reconnects >= self._reconnect.max_reconnects
                ):
                    raise
                reconnects += 1
                _LOGGER.warning(
                    "Enclave I/O failed, reconnecting (%d/%d): %s",
                    reconnects,
                    self._reconnect.max_reconnects,
                    err,
                )
                await self.connect()

        try:
            response = TeeResponse.from_dict(decode_payload(payload))
        except TransportParseError:
            # The frame stream can no longer be trusted.
            await self._discard_connection()
            self._set_state(ConnectionState.DISCONNECTED)
            raise

        if response.id != request.id:
            _LOGGER.warning(
                "Enclave response id %r does not match request id %r",
                response.id,
                request.id,
            )
        _LOGGER.debug(
            "Received response from enclave: id=%s success=%s",
            response.id,
            response.success,
        )
        return response

    async def _exchange(self, frame: bytes) -> bytes:
        protocol = self._protocol
        if protocol is None or not protocol.is_open:
            raise TransportIOError("Not connected to enclave")
        if protocol.pending_frames:
            _LOGGER.warning(
                "%d unsolicited frame(s) queued ahead of this request",
                protocol.pending_frames,
            )
        await protocol.write_frame(frame)
        return await protocol.read_frame()

    # -------------------------------------------------------------------------
    # Internal: Connection State Machine
    # -------------------------------------------------------------------------

    async def _connect_once(self) -> None:
        await self._discard_connection()
        self._set_state(ConnectionState.CONNECTING)
        try:
            _, protocol = await open_connection(
                self._address,
                lambda: FrameProtocol(
                    max_frame_size=self._max_frame_size,
                    on_lost=self._handle_connection_lost,
                ),
                timeout=self._timeout,
            )
        except TransportConnectError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        except asyncio.CancelledError:
            self._set_state(ConnectionState.DISCONNECTED)
            raise
        self._protocol = protocol
        self._set_state(ConnectionState.CONNECTED)

    async def _discard_connection(self) -> None:
        protocol = self._protocol
        self._protocol = None
        if protocol is None:
            return
        protocol.close()
        try:
            await asyncio.wait_for(protocol.wait_closed(), timeout=CLOSE_TIMEOUT)
        except TimeoutError:
            _LOGGER.warning("Enclave socket close timed out")

    def _handle_connection_lost(
        self, protocol: FrameProtocol, exc: Exception | None
    ) -> None:
        if protocol is not self._protocol:
            return
        if exc is not None:
            _LOGGER.warning("Connection to enclave lost: %s", exc)
        else:
            _LOGGER.warning("Connection to enclave closed")
        self._set_state(ConnectionState.DISCONNECTED)

    def _set_state(self, state: ConnectionState) -> None:
        if self._state is not state:
            _LOGGER.debug("State: %s → %s", self._state.value, state.value)
            self._state = state

    def _log_connect_retry(self, attempt: int, error: BaseException) -> None:
        _LOGGER.warning(
            "Enclave connection attempt %d/%d failed: %s",
            attempt,
            self._retry_policy.max_attempts,
            error,
        )
