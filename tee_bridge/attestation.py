"""Fetch attestation evidence from the enclave and forward it to guardians."""

from __future__ import annotations

import base64
import binascii
import logging

from .errors import AttestationUnavailableError
from .guardian import AttestationBundle, AttestationSubmission, GuardianSubmitter
from .protocol import TeeRequest, TeeResponse, build_request
from .transport import EnclaveClient

_LOGGER = logging.getLogger(__name__)

ATTESTATION_METHOD = "get_attestation"


def build_attestation_request() -> TeeRequest:
    """Build the enclave request asking for fresh attestation evidence."""
    return build_request(ATTESTATION_METHOD, {})


def bundle_from_response(response: TeeResponse, caller_id: str) -> AttestationBundle:
    """Assemble an attestation bundle from an enclave response.

    The enclave answers ``get_attestation`` with ``data.attestation`` (base64),
    ``data.certificates`` (list of base64) and ``data.publicKey``.

    Raises:
        AttestationUnavailableError: If the response failed, carries no data,
            or the enclave cannot produce attestation (e.g. no Nitro hardware).
    """
    if not response.success or not isinstance(response.data, dict):
        detail = response.error or "no data"
        raise AttestationUnavailableError(
            f"Failed to get attestation from enclave: {detail}"
        )

    data = response.data
    if not data.get("attestation"):
        raise AttestationUnavailableError("Enclave does not support attestation")

    try:
        attestation_doc = base64.b64decode(data["attestation"], validate=True)
        certificates = tuple(
            base64.b64decode(cert, validate=True)
            for cert in data.get("certificates") or ()
        )
    except (binascii.Error, TypeError, ValueError) as err:
        raise AttestationUnavailableError(
            f"Enclave returned malformed attestation: {err}"
        ) from err

    return AttestationBundle(
        attestation_doc=attestation_doc,
        certificate_chain=certificates,
        enclave_public_key=str(data.get("publicKey", "")),
        caller_id=caller_id,
    )


async def request_and_submit(
    client: EnclaveClient,
    submitter: GuardianSubmitter,
    caller_id: str,
) -> AttestationSubmission:
    """Request attestation from the enclave and submit it to the guardians."""
    _LOGGER.info("Requesting attestation from enclave")
    response = await client.send(build_attestation_request())
    bundle = bundle_from_response(response, caller_id)
    return await submitter.submit(bundle)
