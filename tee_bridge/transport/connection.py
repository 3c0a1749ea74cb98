"""Socket helpers for reaching the enclave."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from ..errors import TransportConnectError, TransportTimeout

P = TypeVar("P", bound=asyncio.Protocol)


@dataclass(frozen=True)
class UnixSocketAddress:
    """Unix-domain socket path, used for local development enclaves."""

    path: str

    def __str__(self) -> str:
        return f"unix:{self.path}"


@dataclass(frozen=True)
class VsockAddress:
    """Hypervisor socket address of a Nitro-style enclave."""

    cid: int
    port: int

    def __str__(self) -> str:
        return f"vsock:{self.cid}:{self.port}"


EnclaveAddress = UnixSocketAddress | VsockAddress


async def open_connection(
    address: EnclaveAddress,
    protocol_factory: Callable[[], P],
    *,
    timeout: float = 30.0,
) -> tuple[asyncio.Transport, P]:
    """Open a stream connection to the enclave.

    The whole open, including the socket handshake, is bounded by
    ``timeout``. On expiry the in-progress socket is torn down.

    Raises:
        TransportTimeout: If the connection did not complete in time.
        TransportConnectError: If the socket could not be opened.
    """
    try:
        transport, protocol = await asyncio.wait_for(
            _create_connection(address, protocol_factory), timeout=timeout
        )
    except TimeoutError as err:
        raise TransportTimeout(
            f"Connection to {address} timed out after {timeout}s", timeout
        ) from err
    except OSError as err:
        raise TransportConnectError(f"Connection to {address} failed: {err}") from err
    return transport, protocol  # type: ignore[return-value]


async def _create_connection(
    address: EnclaveAddress,
    protocol_factory: Callable[[], P],
) -> tuple[asyncio.BaseTransport, P]:
    loop = asyncio.get_running_loop()
    if isinstance(address, UnixSocketAddress):
        return await loop.create_unix_connection(protocol_factory, address.path)

    family = getattr(socket, "AF_VSOCK", None)
    if family is None:
        raise TransportConnectError("vsock is not supported on this platform")
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setblocking(False)
    try:
        await loop.sock_connect(sock, (address.cid, address.port))
        return await loop.create_connection(protocol_factory, sock=sock)
    except BaseException:
        # Covers cancellation by the timeout as well as OS errors.
        sock.close()
        raise
