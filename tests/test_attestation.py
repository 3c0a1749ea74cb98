"""Tests for the attestation fetch-and-forward flow."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from tee_bridge.attestation import (
    ATTESTATION_METHOD,
    build_attestation_request,
    bundle_from_response,
    request_and_submit,
)
from tee_bridge.errors import AttestationUnavailableError
from tee_bridge.protocol import TeeResponse

ATTESTATION_DATA = {
    "attestation": base64.b64encode(b"cbor-doc").decode(),
    "certificates": [
        base64.b64encode(b"cert-a").decode(),
        base64.b64encode(b"cert-b").decode(),
    ],
    "publicKey": "0x04deadbeef",
}


def test_build_attestation_request():
    request = build_attestation_request()
    assert request.method == ATTESTATION_METHOD
    assert request.params == {}


class TestBundleFromResponse:
    """Tests for bundle_from_response()."""

    def test_decodes_evidence(self):
        response = TeeResponse(id="1", success=True, data=ATTESTATION_DATA)

        bundle = bundle_from_response(response, "tapp-1")

        assert bundle.attestation_doc == b"cbor-doc"
        assert bundle.certificate_chain == (b"cert-a", b"cert-b")
        assert bundle.enclave_public_key == "0x04deadbeef"
        assert bundle.caller_id == "tapp-1"

    def test_failed_response(self):
        response = TeeResponse(id="1", success=False, error="enclave busy")
        with pytest.raises(AttestationUnavailableError, match="enclave busy"):
            bundle_from_response(response, "tapp-1")

    def test_missing_data(self):
        response = TeeResponse(id="1", success=True)
        with pytest.raises(AttestationUnavailableError, match="no data"):
            bundle_from_response(response, "tapp-1")

    def test_attestation_not_supported(self):
        response = TeeResponse(
            id="1", success=True, data={"attestation": None, "publicKey": "k"}
        )
        with pytest.raises(AttestationUnavailableError, match="does not support"):
            bundle_from_response(response, "tapp-1")

    def test_malformed_base64(self):
        response = TeeResponse(
            id="1", success=True, data={**ATTESTATION_DATA, "attestation": "***"}
        )
        with pytest.raises(AttestationUnavailableError, match="malformed"):
            bundle_from_response(response, "tapp-1")


async def test_request_and_submit():
    client = MagicMock()
    client.send = AsyncMock(
        return_value=TeeResponse(id="1", success=True, data=ATTESTATION_DATA)
    )
    submitter = MagicMock()
    submitter.submit = AsyncMock(return_value="submission")

    result = await request_and_submit(client, submitter, "tapp-9")

    assert result == "submission"
    sent = client.send.await_args.args[0]
    assert sent.method == ATTESTATION_METHOD
    bundle = submitter.submit.await_args.args[0]
    assert bundle.caller_id == "tapp-9"
    assert bundle.attestation_doc == b"cbor-doc"
