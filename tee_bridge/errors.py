"""Error types for the TEE bridge transport and guardian clients."""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Tag identifying the failure category of a bridge error."""

    CONNECT = "connect"
    IO = "io"
    PARSE = "parse"
    GUARDIAN_UNREACHABLE = "guardian_unreachable"
    GUARDIAN_RESPONSE = "guardian_response"
    ATTESTATION_UNAVAILABLE = "attestation_unavailable"
    CONFIG = "config"


class BridgeError(Exception):
    """Base error for TEE bridge failures."""

    kind: ErrorKind


class TransportConnectError(BridgeError):
    """Opening the enclave socket or completing the handshake failed."""

    kind = ErrorKind.CONNECT


class TransportTimeout(TransportConnectError):
    """The enclave socket did not connect within the allotted time."""

    def __init__(self, message: str, timeout: float) -> None:
        super().__init__(message)
        self.timeout = timeout


class TransportIOError(BridgeError):
    """A read or write failed on an established enclave connection."""

    kind = ErrorKind.IO


class FrameTooLargeError(TransportIOError):
    """A frame length exceeded the configured ceiling."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Frame of {length} bytes exceeds limit of {limit} bytes")
        self.length = length
        self.limit = limit


class TransportParseError(BridgeError):
    """A complete frame arrived but its payload was not valid JSON."""

    kind = ErrorKind.PARSE


class GuardianResponseError(BridgeError):
    """A guardian endpoint answered with a non-success HTTP status."""

    kind = ErrorKind.GUARDIAN_RESPONSE

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status


class GuardianAllUnreachableError(BridgeError):
    """Every configured guardian endpoint failed for one call."""

    kind = ErrorKind.GUARDIAN_UNREACHABLE

    def __init__(self, endpoint_count: int, last_error: BaseException | None) -> None:
        if last_error is None:
            detail = "unknown error"
        else:
            detail = str(last_error) or type(last_error).__name__
        super().__init__(
            f"All {endpoint_count} guardian endpoints unreachable: {detail}"
        )
        self.endpoint_count = endpoint_count
        self.last_error = last_error


class AttestationUnavailableError(BridgeError):
    """The enclave did not return a usable attestation."""

    kind = ErrorKind.ATTESTATION_UNAVAILABLE


class ConfigError(BridgeError):
    """Bridge configuration is missing or invalid."""

    kind = ErrorKind.CONFIG
