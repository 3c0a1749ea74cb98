"""HTTP client for guardian verification endpoints.

Guardians are independent services that verify attestation evidence. The
submitter forwards bundles to them without interpreting the evidence:

- ``submit`` and ``query_status`` try endpoints one by one in configured
  order and return the first success.
- ``check_health`` probes every endpoint concurrently and only reports how
  many answered.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar
from urllib.parse import quote

import aiohttp

from .errors import GuardianAllUnreachableError, GuardianResponseError

_LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_HEALTH_TIMEOUT = 5.0

_E = TypeVar("_E", bound=Enum)


class SubmissionStatus(Enum):
    """Status a guardian reports for a freshly submitted attestation."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"


class ConsensusState(Enum):
    """Aggregate verification progress across guardians."""

    PENDING = "pending"
    ACHIEVED = "achieved"
    FAILED = "failed"
    DISPUTED = "disputed"


@dataclass(frozen=True)
class AttestationBundle:
    """Evidence package produced by the enclave.

    Attributes:
        attestation_doc: Raw attestation document.
        certificate_chain: Certificates, leaf first.
        enclave_public_key: Public key the enclave signs responses with.
        caller_id: Identifier of the application the enclave runs.
    """

    attestation_doc: bytes
    certificate_chain: tuple[bytes, ...] = ()
    enclave_public_key: str = ""
    caller_id: str = ""

    def to_payload(self) -> dict[str, Any]:
        """Build the JSON body for ``POST /attestation/submit``."""
        return {
            "attestation_doc": _b64(self.attestation_doc),
            "certificate_chain": [_b64(cert) for cert in self.certificate_chain],
            "enclave_public_key": self.enclave_public_key,
            "tapp_id": self.caller_id,
        }


@dataclass(frozen=True)
class AttestationSubmission:
    """Guardian acknowledgement of a submitted attestation."""

    attestation_id: str
    submission_time: datetime | None
    status: SubmissionStatus

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttestationSubmission:
        """Parse a submit response body.

        Only ``attestation_id`` is required. A 2xx answer means the guardian
        already holds the bundle, so an unreadable time becomes ``None`` and
        an unknown status becomes ``SUBMITTED``.

        Raises:
            KeyError: If ``attestation_id`` is missing.
        """
        return cls(
            attestation_id=str(data["attestation_id"]),
            submission_time=_parse_time(data.get("submission_time")),
            status=_parse_enum(
                SubmissionStatus, data.get("status"), SubmissionStatus.SUBMITTED
            ),
        )


@dataclass(frozen=True)
class ConsensusStatus:
    """Verification progress for one attestation."""

    attestation_id: str
    status: ConsensusState
    verified_count: int
    total_count: int

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConsensusStatus:
        """Parse a status response body.

        Unknown states read as ``PENDING``; missing counts read as 0.

        Raises:
            KeyError: If ``attestation_id`` is missing.
            TypeError, ValueError: If a count is present but not a number.
        """
        return cls(
            attestation_id=str(data["attestation_id"]),
            status=_parse_enum(
                ConsensusState, data.get("status"), ConsensusState.PENDING
            ),
            verified_count=int(data.get("guardians_verified") or 0),
            total_count=int(data.get("total_guardians") or 0),
        )


@dataclass(frozen=True)
class GuardianHealth:
    """Result of probing every guardian once."""

    reachable: int
    total: int
    endpoints: dict[str, bool] = field(default_factory=dict)


# Per-endpoint failures that move failover on to the next guardian.
_ENDPOINT_ERRORS = (
    TimeoutError,
    aiohttp.ClientError,
    GuardianResponseError,
    KeyError,
    TypeError,
    ValueError,
)


class GuardianSubmitter:
    """Failover client over an ordered, fixed list of guardian endpoints."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        endpoints: Sequence[str],
        *,
        timeout: float = DEFAULT_TIMEOUT,
        health_timeout: float = DEFAULT_HEALTH_TIMEOUT,
    ) -> None:
        if not endpoints:
            raise ValueError("At least one guardian endpoint is required")
        self._session = session
        self._endpoints: tuple[str, ...] = tuple(e.rstrip("/") for e in endpoints)
        self._timeout = timeout
        self._health_timeout = health_timeout

    @property
    def endpoints(self) -> tuple[str, ...]:
        return self._endpoints

    async def submit(self, bundle: AttestationBundle) -> AttestationSubmission:
        """Submit an attestation bundle to the first guardian that accepts it.

        Endpoints are tried sequentially, always starting from the first.

        Raises:
            GuardianAllUnreachableError: If every endpoint failed.
        """
        _LOGGER.info(
            "Submitting attestation for %s to %d guardian(s)",
            bundle.caller_id,
            len(self._endpoints),
        )
        payload = bundle.to_payload()
        last_error: BaseException | None = None

        for endpoint in self._endpoints:
            _LOGGER.debug("Attempting guardian endpoint %s", endpoint)
            try:
                data = await self._read_json(
                    self._session.post(
                        f"{endpoint}/attestation/submit",
                        json=payload,
                        timeout=aiohttp.ClientTimeout(total=self._timeout),
                    )
                )
                submission = AttestationSubmission.from_dict(data)
            except _ENDPOINT_ERRORS as err:
                last_error = err
                _LOGGER.warning(
                    "Guardian endpoint %s failed: %s", endpoint, _describe(err)
                )
                continue

            _LOGGER.info(
                "Attestation %s submitted via %s",
                submission.attestation_id,
                endpoint,
            )
            return submission

        raise GuardianAllUnreachableError(len(self._endpoints), last_error)

    async def query_status(self, attestation_id: str) -> ConsensusStatus:
        """Fetch consensus status from the first guardian that answers.

        Raises:
            GuardianAllUnreachableError: If every endpoint failed.
        """
        _LOGGER.debug("Querying consensus status for %s", attestation_id)
        path = f"/attestation/status/{quote(attestation_id, safe='')}"
        last_error: BaseException | None = None

        for endpoint in self._endpoints:
            try:
                data = await self._read_json(
                    self._session.get(
                        f"{endpoint}{path}",
                        timeout=aiohttp.ClientTimeout(total=self._timeout),
                    )
                )
                status = ConsensusStatus.from_dict(data)
            except _ENDPOINT_ERRORS as err:
                last_error = err
                _LOGGER.debug(
                    "Guardian query via %s failed: %s", endpoint, _describe(err)
                )
                continue

            _LOGGER.debug(
                "Consensus status for %s: %s (%d/%d verified)",
                attestation_id,
                status.status.value,
                status.verified_count,
                status.total_count,
            )
            return status

        raise GuardianAllUnreachableError(len(self._endpoints), last_error)

    async def check_health(self) -> GuardianHealth:
        """Probe every guardian concurrently. Never raises for probe failures."""
        results = await asyncio.gather(
            *(self._probe(endpoint) for endpoint in self._endpoints)
        )
        reachable = sum(results)
        _LOGGER.debug(
            "Guardian health check: %d/%d reachable", reachable, len(self._endpoints)
        )
        return GuardianHealth(
            reachable=reachable,
            total=len(self._endpoints),
            endpoints=dict(zip(self._endpoints, results, strict=True)),
        )

    async def _probe(self, endpoint: str) -> bool:
        try:
            async with self._session.get(
                f"{endpoint}/health",
                timeout=aiohttp.ClientTimeout(total=self._health_timeout),
            ) as resp:
                return 200 <= resp.status < 300
        except (TimeoutError, aiohttp.ClientError, OSError) as err:
            _LOGGER.debug(
                "Guardian %s health probe failed: %s", endpoint, _describe(err)
            )
            return False

    @staticmethod
    async def _read_json(request: Any) -> dict[str, Any]:
        """Await a pending session request and return its 2xx JSON body."""
        async with request as resp:
            if not 200 <= resp.status < 300:
                raise GuardianResponseError(
                    resp.status, f"Guardian returned HTTP {resp.status}"
                )
            data = await resp.json(content_type=None)
        if not isinstance(data, dict):
            raise TypeError("Guardian response body is not a JSON object")
        return data


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _describe(err: BaseException) -> str:
    if isinstance(err, TimeoutError):
        return "request timed out"
    return str(err) or type(err).__name__


def _parse_time(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        _LOGGER.debug("Unparseable guardian timestamp %r", value)
        return None


def _parse_enum(enum_cls: type[_E], value: Any, default: _E) -> _E:
    try:
        return enum_cls(value)
    except (TypeError, ValueError):
        _LOGGER.debug(
            "Unknown guardian %s %r, using %s",
            enum_cls.__name__,
            value,
            default.value,
        )
        return default
