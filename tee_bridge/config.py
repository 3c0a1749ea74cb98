"""Bridge configuration loading.

Configuration is read from a YAML file and then overridden by environment
variables, so a container image can ship one file and vary per deployment:

    transport:
      socket_path: /tmp/enclave.sock   # or vsock_cid + vsock_port
      timeout: 30
      retry_attempts: 5
      retry_delay: 0.1
    guardian:
      endpoints:
        - https://guardian-1.example
    logging:
      level: info
      format: json
    caller_id: my-app
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import aiohttp
import yaml

from .errors import ConfigError
from .guardian import DEFAULT_HEALTH_TIMEOUT, DEFAULT_TIMEOUT, GuardianSubmitter
from .protocol import DEFAULT_MAX_FRAME_SIZE, PROTOCOL_MAX_FRAME_SIZE
from .transport import (
    NO_RECONNECT,
    EnclaveAddress,
    EnclaveClient,
    ReconnectStrategy,
    UnixSocketAddress,
    VsockAddress,
)

CONFIG_PATH_ENV = "TEE_BRIDGE_CONFIG"
DEFAULT_CONFIG_FILE = "config.yaml"
DEFAULT_SOCKET_PATH = "/tmp/enclave.sock"

LOG_LEVELS = ("error", "warning", "info", "debug")
LOG_FORMATS = ("json", "pretty")


@dataclass(frozen=True)
class TransportConfig:
    """Enclave socket settings. A vsock CID selects vsock over the Unix path."""

    socket_path: str = DEFAULT_SOCKET_PATH
    vsock_cid: int | None = None
    vsock_port: int | None = None
    timeout: float = 30.0
    retry_attempts: int = 5
    retry_delay: float = 0.1
    auto_reconnect: bool = True
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE

    @property
    def address(self) -> EnclaveAddress:
        if self.vsock_cid is not None and self.vsock_port is not None:
            return VsockAddress(self.vsock_cid, self.vsock_port)
        return UnixSocketAddress(self.socket_path)


@dataclass(frozen=True)
class GuardianConfig:
    """Guardian endpoint list and request timeouts."""

    endpoints: tuple[str, ...] = ()
    timeout: float = DEFAULT_TIMEOUT
    health_timeout: float = DEFAULT_HEALTH_TIMEOUT


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "info"
    format: str = "json"


@dataclass(frozen=True)
class BridgeConfig:
    """Complete bridge configuration."""

    transport: TransportConfig = field(default_factory=TransportConfig)
    guardian: GuardianConfig = field(default_factory=GuardianConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    caller_id: str = "default"


def load_config(
    path: str | Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> BridgeConfig:
    """Load configuration from YAML and apply environment overrides.

    The file is taken from ``path``, else ``$TEE_BRIDGE_CONFIG``, else
    ``./config.yaml``. An explicitly named file must exist; the default file
    may be absent, in which case only environment variables apply.

    Environment overrides: ``ENCLAVE_SOCKET``, ``VSOCK_CID``, ``VSOCK_PORT``,
    ``GUARDIAN_ENDPOINTS`` (comma separated), ``LOG_LEVEL``, ``LOG_FORMAT``,
    ``TAPP_ID``.

    Raises:
        ConfigError: If the file cannot be read or a value is invalid.
    """
    env = os.environ if env is None else env
    explicit = path is not None or CONFIG_PATH_ENV in env
    config_path = Path(path or env.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_FILE)

    data: dict[str, Any] = {}
    if explicit or config_path.exists():
        data = _load_yaml(config_path)

    transport = dict(_section(data, "transport"))
    guardian = dict(_section(data, "guardian"))
    logging_ = dict(_section(data, "logging"))

    if "ENCLAVE_SOCKET" in env:
        transport["socket_path"] = env["ENCLAVE_SOCKET"]
    if "VSOCK_CID" in env:
        transport["vsock_cid"] = env["VSOCK_CID"]
    if "VSOCK_PORT" in env:
        transport["vsock_port"] = env["VSOCK_PORT"]
    if "GUARDIAN_ENDPOINTS" in env:
        guardian["endpoints"] = [
            e.strip() for e in env["GUARDIAN_ENDPOINTS"].split(",") if e.strip()
        ]
    if "LOG_LEVEL" in env:
        logging_["level"] = env["LOG_LEVEL"]
    if "LOG_FORMAT" in env:
        logging_["format"] = env["LOG_FORMAT"]

    caller_id = env.get("TAPP_ID") or data.get("caller_id") or "default"

    return BridgeConfig(
        transport=_parse_transport(transport),
        guardian=_parse_guardian(guardian),
        logging=_parse_logging(logging_),
        caller_id=str(caller_id),
    )


def build_enclave_client(config: TransportConfig) -> EnclaveClient:
    """Create an enclave client from transport settings."""
    return EnclaveClient(
        config.address,
        timeout=config.timeout,
        retry_attempts=config.retry_attempts,
        retry_delay=config.retry_delay,
        reconnect=ReconnectStrategy() if config.auto_reconnect else NO_RECONNECT,
        max_frame_size=config.max_frame_size,
    )


def build_guardian_submitter(
    session: aiohttp.ClientSession, config: GuardianConfig
) -> GuardianSubmitter:
    """Create a guardian submitter bound to a caller-owned session."""
    return GuardianSubmitter(
        session,
        config.endpoints,
        timeout=config.timeout,
        health_timeout=config.health_timeout,
    )


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as err:
        raise ConfigError(f"Failed to load config file {path}: {err}") from err
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    return section


def _parse_transport(raw: Mapping[str, Any]) -> TransportConfig:
    defaults = TransportConfig()
    vsock_cid = _optional_int(raw, "vsock_cid")
    vsock_port = _optional_int(raw, "vsock_port")
    if (vsock_cid is None) != (vsock_port is None):
        raise ConfigError("transport.vsock_cid and transport.vsock_port go together")

    config = TransportConfig(
        socket_path=str(raw.get("socket_path", defaults.socket_path)),
        vsock_cid=vsock_cid,
        vsock_port=vsock_port,
        timeout=_number(raw, "timeout", defaults.timeout),
        retry_attempts=_integer(raw, "retry_attempts", defaults.retry_attempts),
        retry_delay=_number(raw, "retry_delay", defaults.retry_delay),
        auto_reconnect=bool(raw.get("auto_reconnect", defaults.auto_reconnect)),
        max_frame_size=_integer(raw, "max_frame_size", defaults.max_frame_size),
    )
    if config.timeout <= 0:
        raise ConfigError("transport.timeout must be positive")
    if config.retry_attempts < 1:
        raise ConfigError("transport.retry_attempts must be at least 1")
    if config.retry_delay < 0:
        raise ConfigError("transport.retry_delay must not be negative")
    if not 0 < config.max_frame_size <= PROTOCOL_MAX_FRAME_SIZE:
        raise ConfigError("transport.max_frame_size is out of range")
    return config


def _parse_guardian(raw: Mapping[str, Any]) -> GuardianConfig:
    endpoints = raw.get("endpoints") or ()
    if isinstance(endpoints, str):
        endpoints = [endpoints]
    if not isinstance(endpoints, (list, tuple)):
        raise ConfigError("guardian.endpoints must be a list of URLs")
    if not endpoints:
        raise ConfigError("guardian.endpoints must name at least one endpoint")
    for endpoint in endpoints:
        if not isinstance(endpoint, str) or not endpoint.startswith(
            ("http://", "https://")
        ):
            raise ConfigError(f"Invalid guardian endpoint: {endpoint!r}")

    config = GuardianConfig(
        endpoints=tuple(endpoints),
        timeout=_number(raw, "timeout", DEFAULT_TIMEOUT),
        health_timeout=_number(raw, "health_timeout", DEFAULT_HEALTH_TIMEOUT),
    )
    if config.timeout <= 0 or config.health_timeout <= 0:
        raise ConfigError("guardian timeouts must be positive")
    return config


def _parse_logging(raw: Mapping[str, Any]) -> LoggingConfig:
    level = str(raw.get("level", "info")).lower()
    if level == "warn":
        level = "warning"
    fmt = str(raw.get("format", "json")).lower()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
    if fmt not in LOG_FORMATS:
        raise ConfigError(f"logging.format must be one of {', '.join(LOG_FORMATS)}")
    return LoggingConfig(level=level, format=fmt)


def _number(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"{key} must be a number, got {value!r}") from err


def _integer(raw: Mapping[str, Any], key: str, default: int) -> int:
    value = raw.get(key, default)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except ValueError as err:
        raise ConfigError(f"{key} must be an integer, got {value!r}") from err


def _optional_int(raw: Mapping[str, Any], key: str) -> int | None:
    if raw.get(key) is None:
        return None
    return _integer(raw, key, 0)
