"""Transport layer for the enclave socket.

Components:
- connection: socket addresses and connection setup
- stream: asyncio protocol reassembling frames from partial reads
- client: connection lifecycle, request/response exchange, reconnect
"""

from .client import NO_RECONNECT, ConnectionState, EnclaveClient, ReconnectStrategy
from .connection import EnclaveAddress, UnixSocketAddress, VsockAddress, open_connection
from .stream import FrameProtocol

__all__ = [
    "NO_RECONNECT",
    "ConnectionState",
    "EnclaveAddress",
    "EnclaveClient",
    "FrameProtocol",
    "ReconnectStrategy",
    "UnixSocketAddress",
    "VsockAddress",
    "open_connection",
]
