"""
Configuration for the Typesense client.

All configuration is validated at construction time, not per-call.
Environment variables are read once via ``ClientConfig.from_env()`` and
the resulting object is immutable. The only mutable piece of client state,
the node cursor, lives in :class:`~tsconsole.nodes.NodePool`.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from urllib.parse import urlsplit

from tsconsole.models import ConfigurationError, ConnectionConfig

logger = logging.getLogger(__name__)

_PROTOCOLS = ("http", "https")
_DEFAULT_PORTS = {"http": 80, "https": 443}

_DEFAULT_CONNECTION_TIMEOUT = 5.0
_DEFAULT_HEALTHCHECK_INTERVAL = 15.0
_DEFAULT_NUM_RETRIES = 3
_DEFAULT_RETRY_INTERVAL = 1.0


@dataclass(frozen=True)
class Node:
    """One endpoint of the Typesense cluster."""

    host: str
    port: int
    protocol: str = "http"

    def __post_init__(self) -> None:
        errors: list[str] = []
        if not self.host or not self.host.strip():
            errors.append("host must be a non-empty string")
        if self.protocol not in _PROTOCOLS:
            errors.append(f"protocol must be one of {_PROTOCOLS}, got {self.protocol!r}")
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            errors.append(f"port must be an integer, got {self.port!r}")
        elif not 1 <= self.port <= 65535:
            errors.append(f"port must be 1-65535, got {self.port}")
        if errors:
            raise ConfigurationError("Invalid node: " + "; ".join(errors))

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"

    @classmethod
    def from_url(cls, url: str) -> Node:
        """Parse ``protocol://host[:port]``; the port defaults by protocol."""
        parts = urlsplit(url.strip())
        protocol = parts.scheme or "http"
        try:
            port = parts.port
        except ValueError:
            raise ConfigurationError(f"Invalid node URL {url!r}: bad port")
        return cls(
            host=parts.hostname or "",
            port=port if port is not None else _DEFAULT_PORTS.get(protocol, 80),
            protocol=protocol,
        )


@dataclass(frozen=True)
class ClientConfig:
    """Validated, immutable configuration for a Typesense client.

    Args:
        nodes: Cluster endpoints, tried in order. Must not be empty.
        api_key: Value of the ``X-TYPESENSE-API-KEY`` header.
        connection_timeout_seconds: Timeout for each individual attempt.
        healthcheck_interval_seconds: Carried for callers that poll
            ``/health``; the client itself never health-checks proactively.
        num_retries: Retries after the first attempt (3 means 4 attempts).
        retry_interval_seconds: Fixed delay before each retry.
        verify_ssl: TLS verification (True, False, or path to CA bundle).
    """

    nodes: tuple[Node, ...]
    api_key: str
    connection_timeout_seconds: float = _DEFAULT_CONNECTION_TIMEOUT
    healthcheck_interval_seconds: float = _DEFAULT_HEALTHCHECK_INTERVAL
    num_retries: int = _DEFAULT_NUM_RETRIES
    retry_interval_seconds: float = _DEFAULT_RETRY_INTERVAL
    verify_ssl: bool | str = True

    def __post_init__(self) -> None:
        # accept any sequence of nodes but store a tuple
        object.__setattr__(self, "nodes", tuple(self.nodes))

        errors: list[str] = []

        if not self.nodes:
            errors.append("nodes must contain at least one node")
        for node in self.nodes:
            if not isinstance(node, Node):
                errors.append(f"nodes must be Node instances, got {type(node).__name__}")
        if not self.api_key:
            errors.append("api_key must be a non-empty string")
        if self.connection_timeout_seconds <= 0:
            errors.append(
                f"connection_timeout_seconds must be > 0, got {self.connection_timeout_seconds}"
            )
        if self.healthcheck_interval_seconds <= 0:
            errors.append(
                "healthcheck_interval_seconds must be > 0, "
                f"got {self.healthcheck_interval_seconds}"
            )
        if self.num_retries < 0:
            errors.append(f"num_retries must be >= 0, got {self.num_retries}")
        if self.retry_interval_seconds < 0:
            errors.append(f"retry_interval_seconds must be >= 0, got {self.retry_interval_seconds}")

        if errors:
            raise ConfigurationError("Invalid Typesense configuration: " + "; ".join(errors))

    @property
    def max_attempts(self) -> int:
        return 1 + self.num_retries

    @classmethod
    def from_connection(cls, connection: ConnectionConfig, **overrides: object) -> ClientConfig:
        """Build a single-node config from a saved connection record.

        A blank port falls back to 443 for https and 80 for http.
        """
        if not connection.host.strip():
            raise ConfigurationError("Host is required")
        port_text = connection.port.strip()
        if port_text and not port_text.isdigit():
            raise ConfigurationError("Port must be a valid number")
        if not connection.api_key.strip():
            raise ConfigurationError("API key is required")

        port = int(port_text) if port_text else _DEFAULT_PORTS.get(connection.protocol, 80)
        kwargs: dict[str, object] = {
            "nodes": (Node(connection.host.strip(), port, connection.protocol),),
            "api_key": connection.api_key.strip(),
        }
        kwargs.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**kwargs)  # type: ignore[arg-type]

    @classmethod
    def from_env(cls, **overrides: object) -> ClientConfig:
        """Build config from environment variables with optional overrides.

        Environment variables:
            TYPESENSE_NODES                -- Comma-separated node URLs
                                              (e.g. ``https://a:443,https://b:443``)
            TYPESENSE_HOST                 -- Single node host, used when
                                              TYPESENSE_NODES is unset (default localhost)
            TYPESENSE_PORT                 -- Single node port (default 8108)
            TYPESENSE_PROTOCOL             -- Single node protocol (default http)
            TYPESENSE_API_KEY              -- API key (required)
            TYPESENSE_CONNECTION_TIMEOUT   -- Per-attempt timeout seconds (default 5)
            TYPESENSE_HEALTHCHECK_INTERVAL -- Seconds (default 15)
            TYPESENSE_NUM_RETRIES          -- Retries after first attempt (default 3)
            TYPESENSE_RETRY_INTERVAL       -- Seconds between retries (default 1)
            TYPESENSE_VERIFY_SSL           -- "true", "false", or path to CA bundle

        Explicit keyword arguments override environment variables.
        """

        def _env_float(key: str, default: float) -> float:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Environment variable {key}={raw!r} is not a valid number"
                )

        def _env_int(key: str, default: int) -> int:
            raw = os.environ.get(key)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Environment variable {key}={raw!r} is not a valid integer"
                )

        def _env_verify(key: str, default: bool | str) -> bool | str:
            raw = os.environ.get(key)
            if raw is None:
                return default
            low = raw.strip().lower()
            if low in ("true", "1", "yes"):
                return True
            if low in ("false", "0", "no"):
                return False
            return raw  # treat as CA bundle path

        def _env_nodes() -> tuple[Node, ...]:
            raw = os.environ.get("TYPESENSE_NODES")
            if raw:
                return tuple(Node.from_url(u) for u in raw.split(",") if u.strip())
            return (
                Node(
                    host=os.environ.get("TYPESENSE_HOST", "localhost"),
                    port=_env_int("TYPESENSE_PORT", 8108),
                    protocol=os.environ.get("TYPESENSE_PROTOCOL", "http"),
                ),
            )

        kwargs: dict[str, object] = {}
        if overrides.get("nodes") is None:
            kwargs["nodes"] = _env_nodes()
        kwargs.update(
            {
                "api_key": os.environ.get("TYPESENSE_API_KEY", ""),
                "connection_timeout_seconds": _env_float(
                    "TYPESENSE_CONNECTION_TIMEOUT", _DEFAULT_CONNECTION_TIMEOUT
                ),
                "healthcheck_interval_seconds": _env_float(
                    "TYPESENSE_HEALTHCHECK_INTERVAL", _DEFAULT_HEALTHCHECK_INTERVAL
                ),
                "num_retries": _env_int("TYPESENSE_NUM_RETRIES", _DEFAULT_NUM_RETRIES),
                "retry_interval_seconds": _env_float(
                    "TYPESENSE_RETRY_INTERVAL", _DEFAULT_RETRY_INTERVAL
                ),
                "verify_ssl": _env_verify("TYPESENSE_VERIFY_SSL", True),
            }
        )
        kwargs.update({k: v for k, v in overrides.items() if v is not None})

        config = cls(**kwargs)  # type: ignore[arg-type]
        logger.info(
            "Typesense config: nodes=%s timeout=%.1f retries=%d retry_interval=%.1f",
            ",".join(n.base_url for n in config.nodes),
            config.connection_timeout_seconds,
            config.num_retries,
            config.retry_interval_seconds,
        )
        return config
