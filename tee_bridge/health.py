"""Aggregate health snapshot of the bridge."""

from __future__ import annotations

import time
from dataclasses import dataclass

from .guardian import GuardianSubmitter
from .transport import EnclaveClient


@dataclass(frozen=True)
class BridgeHealth:
    """Point-in-time view of enclave and guardian reachability."""

    enclave_connected: bool
    guardians_reachable: int
    guardians_total: int
    uptime_seconds: int

    @property
    def healthy(self) -> bool:
        return self.enclave_connected and self.guardians_reachable > 0

    def to_dict(self) -> dict[str, object]:
        return {
            "status": "healthy" if self.healthy else "unhealthy",
            "enclave_connected": self.enclave_connected,
            "guardians_reachable": self.guardians_reachable,
            "guardians_total": self.guardians_total,
            "uptime_seconds": self.uptime_seconds,
        }


async def collect_health(
    client: EnclaveClient,
    submitter: GuardianSubmitter,
    *,
    started_at: float,
) -> BridgeHealth:
    """Probe guardians and read enclave state.

    Args:
        client: Enclave transport client (not probed, only inspected)
        submitter: Guardian submitter to health-check
        started_at: ``time.monotonic()`` value recorded at bridge start
    """
    guardians = await submitter.check_health()
    return BridgeHealth(
        enclave_connected=client.is_connected,
        guardians_reachable=guardians.reachable,
        guardians_total=guardians.total,
        uptime_seconds=int(time.monotonic() - started_at),
    )
