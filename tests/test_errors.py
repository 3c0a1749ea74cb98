"""Tests for the bridge error taxonomy."""

from __future__ import annotations

import pytest

from tee_bridge.errors import (
    AttestationUnavailableError,
    BridgeError,
    ConfigError,
    ErrorKind,
    FrameTooLargeError,
    GuardianAllUnreachableError,
    GuardianResponseError,
    TransportConnectError,
    TransportIOError,
    TransportParseError,
    TransportTimeout,
)


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (TransportConnectError("x"), ErrorKind.CONNECT),
        (TransportTimeout("x", 1.0), ErrorKind.CONNECT),
        (TransportIOError("x"), ErrorKind.IO),
        (FrameTooLargeError(10, 5), ErrorKind.IO),
        (TransportParseError("x"), ErrorKind.PARSE),
        (GuardianResponseError(500, "x"), ErrorKind.GUARDIAN_RESPONSE),
        (GuardianAllUnreachableError(2, None), ErrorKind.GUARDIAN_UNREACHABLE),
        (AttestationUnavailableError("x"), ErrorKind.ATTESTATION_UNAVAILABLE),
        (ConfigError("x"), ErrorKind.CONFIG),
    ],
)
def test_error_kinds(error: BridgeError, kind: ErrorKind):
    assert isinstance(error, BridgeError)
    assert error.kind is kind


def test_all_unreachable_without_last_error():
    err = GuardianAllUnreachableError(4, None)
    assert err.endpoint_count == 4
    assert err.last_error is None
    assert "unknown error" in str(err)


def test_all_unreachable_names_last_error():
    last = GuardianResponseError(503, "Guardian returned HTTP 503")
    err = GuardianAllUnreachableError(3, last)
    assert "All 3 guardian endpoints unreachable: Guardian returned HTTP 503" == str(err)


def test_all_unreachable_names_silent_error_type():
    err = GuardianAllUnreachableError(3, TimeoutError())
    assert str(err) == "All 3 guardian endpoints unreachable: TimeoutError"
