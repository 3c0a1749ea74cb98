"""Untrusted bridge between callers, an enclave socket, and guardian endpoints."""

__version__ = "0.1.0"

from .attestation import (
    build_attestation_request,
    bundle_from_response,
    request_and_submit,
)
from .config import (
    BridgeConfig,
    GuardianConfig,
    LoggingConfig,
    TransportConfig,
    build_enclave_client,
    build_guardian_submitter,
    load_config,
)
from .errors import (
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
from .guardian import (
    AttestationBundle,
    AttestationSubmission,
    ConsensusState,
    ConsensusStatus,
    GuardianHealth,
    GuardianSubmitter,
    SubmissionStatus,
)
from .health import BridgeHealth, collect_health
from .log import configure_logging
from .protocol import (
    FrameDecoder,
    TeeRequest,
    TeeResponse,
    build_request,
    decode_payload,
    encode_frame,
)
from .retry import RetryPolicy, retry_with_backoff
from .transport import (
    NO_RECONNECT,
    ConnectionState,
    EnclaveClient,
    ReconnectStrategy,
    UnixSocketAddress,
    VsockAddress,
)

__all__ = [
    "NO_RECONNECT",
    "AttestationBundle",
    "AttestationSubmission",
    "AttestationUnavailableError",
    "BridgeConfig",
    "BridgeError",
    "BridgeHealth",
    "ConfigError",
    "ConnectionState",
    "ConsensusState",
    "ConsensusStatus",
    "EnclaveClient",
    "ErrorKind",
    "FrameDecoder",
    "FrameTooLargeError",
    "GuardianAllUnreachableError",
    "GuardianConfig",
    "GuardianHealth",
    "GuardianResponseError",
    "GuardianSubmitter",
    "LoggingConfig",
    "ReconnectStrategy",
    "RetryPolicy",
    "SubmissionStatus",
    "TeeRequest",
    "TeeResponse",
    "TransportConfig",
    "TransportConnectError",
    "TransportIOError",
    "TransportParseError",
    "TransportTimeout",
    "UnixSocketAddress",
    "VsockAddress",
    "__version__",
    "build_attestation_request",
    "build_enclave_client",
    "build_guardian_submitter",
    "build_request",
    "bundle_from_response",
    "collect_health",
    "configure_logging",
    "decode_payload",
    "encode_frame",
    "load_config",
    "request_and_submit",
    "retry_with_backoff",
]
