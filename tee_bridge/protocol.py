"""Wire protocol for the enclave socket.

Every message in either direction is a frame::

    [4 bytes: payload length, unsigned big-endian][payload: UTF-8 JSON]

There is no checksum, version byte, or compression. The protocol itself allows
payloads up to 2**32 - 1 bytes; decoders enforce a much smaller ceiling so a
misbehaving peer cannot make the bridge buffer gigabytes.
"""

from __future__ import annotations

import json
import struct
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any

from .errors import FrameTooLargeError, TransportParseError

HEADER = struct.Struct(">I")
HEADER_SIZE = HEADER.size

PROTOCOL_MAX_FRAME_SIZE = 2**32 - 1
DEFAULT_MAX_FRAME_SIZE = 16 * 1024 * 1024


@dataclass(frozen=True)
class TeeRequest:
    """Request envelope sent to the enclave.

    Attributes:
        id: Caller-generated correlation token.
        method: Enclave method name.
        params: Opaque JSON value, never interpreted by the bridge.
        timestamp: Creation time in epoch milliseconds.
    """

    id: str
    method: str
    params: Any = field(default_factory=dict)
    timestamp: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "params": self.params,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TeeRequest:
        return cls(
            id=str(data["id"]),
            method=str(data["method"]),
            params=data.get("params"),
            timestamp=int(data.get("timestamp", 0)),
        )


@dataclass(frozen=True)
class TeeResponse:
    """Response envelope returned by the enclave."""

    id: str
    success: bool
    data: Any = None
    signature: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"id": self.id, "success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.signature is not None:
            result["signature"] = self.signature
        if self.error is not None:
            result["error"] = self.error
        return result

    @classmethod
    def from_dict(cls, data: Any) -> TeeResponse:
        """Build a response from a decoded payload.

        Raises:
            TransportParseError: If the payload is not a JSON object.
        """
        if not isinstance(data, dict):
            raise TransportParseError("Response payload is not a JSON object")
        return cls(
            id=str(data.get("id", "")),
            success=bool(data.get("success", False)),
            data=data.get("data"),
            signature=data.get("signature"),
            error=data.get("error"),
        )


def build_request(
    method: str,
    params: Any = None,
    *,
    request_id: str | None = None,
) -> TeeRequest:
    """Build a request envelope with a fresh id and current timestamp."""
    return TeeRequest(
        id=request_id or str(uuid.uuid4()),
        method=method,
        params=params if params is not None else {},
        timestamp=int(time.time() * 1000),
    )


def encode_frame(
    payload: Any,
    *,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> bytes:
    """Serialize a JSON value into a single length-prefixed frame.

    Raises:
        FrameTooLargeError: If the encoded payload exceeds ``max_frame_size``.
    """
    if isinstance(payload, (TeeRequest, TeeResponse)):
        payload = payload.to_dict()
    body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )
    limit = min(max_frame_size, PROTOCOL_MAX_FRAME_SIZE)
    if len(body) > limit:
        raise FrameTooLargeError(len(body), limit)
    return HEADER.pack(len(body)) + body


def decode_payload(payload: bytes) -> Any:
    """Decode a complete frame payload into a JSON value.

    Raises:
        TransportParseError: If the payload is not UTF-8 encoded JSON.
    """
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise TransportParseError(f"JSON parse failed: {err}") from err


class FrameDecoder:
    """Incremental frame parser.

    Chunks are queued as received and each byte is copied out exactly once,
    when the frame it belongs to is complete. Feeding one byte at a time and
    feeding a whole stream at once yield the same frames.
    """

    def __init__(self, *, max_frame_size: int = DEFAULT_MAX_FRAME_SIZE) -> None:
        self._max_frame_size = min(max_frame_size, PROTOCOL_MAX_FRAME_SIZE)
        self._chunks: deque[memoryview] = deque()
        self._buffered = 0
        self._expected: int | None = None

    @property
    def buffered(self) -> int:
        """Number of received bytes not yet returned as part of a frame."""
        return self._buffered

    @property
    def at_boundary(self) -> bool:
        """True when no partial frame is pending."""
        return self._expected is None and self._buffered == 0

    def feed(self, data: bytes) -> list[bytes]:
        """Queue ``data`` and return every frame payload it completes.

        Raises:
            FrameTooLargeError: If a header announces a length above the limit.
        """
        if data:
            self._chunks.append(memoryview(bytes(data)))
            self._buffered += len(data)

        frames: list[bytes] = []
        while True:
            if self._expected is None:
                if self._buffered < HEADER_SIZE:
                    break
                (length,) = HEADER.unpack(self._take(HEADER_SIZE))
                if length > self._max_frame_size:
                    raise FrameTooLargeError(length, self._max_frame_size)
                self._expected = length
            if self._buffered < self._expected:
                break
            frames.append(self._take(self._expected))
            self._expected = None
        return frames

    def _take(self, size: int) -> bytes:
        out = bytearray()
        while len(out) < size:
            chunk = self._chunks[0]
            needed = size - len(out)
            if len(chunk) <= needed:
                out += chunk
                self._chunks.popleft()
            else:
                out += chunk[:needed]
                self._chunks[0] = chunk[needed:]
        self._buffered -= size
        return bytes(out)
