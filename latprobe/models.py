"""Data models for latprobe."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from latprobe.config import (
    DEFAULT_KEEPALIVE_EXPIRY,
    DEFAULT_MAX_CONNECTIONS,
    DEFAULT_MAX_KEEPALIVE,
    DEFAULT_TIMEOUT,
    USER_AGENT,
)


@dataclass(frozen=True)
class LatencyReport:
    """Per-phase timing for one completed probe (all durations in seconds)."""

    dns_lookup_seconds: float
    tcp_connect_seconds: float
    tls_handshake_seconds: float
    time_to_first_byte_seconds: float
    total_seconds: float
    download_speed_bytes_per_second: float
    body_byte_count: int
    url: str = ""
    status_code: Optional[int] = None
    http_version: Optional[str] = None
    tls_version: Optional[str] = None  # None for plaintext
    connection_reused: bool = False

    def phase_seconds(self) -> dict[str, float]:
        """Return the timed phases keyed by short phase name."""
        return {
            "dns": self.dns_lookup_seconds,
            "tcp": self.tcp_connect_seconds,
            "tls": self.tls_handshake_seconds,
            "ttfb": self.time_to_first_byte_seconds,
            "total": self.total_seconds,
        }


@dataclass
class ProbeConfig:
    """Client configuration handed to :class:`~latprobe.engine.HttpProbe`."""

    timeout: float = DEFAULT_TIMEOUT
    dns_server: Optional[str] = None
    ipv4_only: bool = False
    ipv6_only: bool = False
    http2: bool = False
    verify: bool = True
    follow_redirects: bool = False
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    max_keepalive_connections: int = DEFAULT_MAX_KEEPALIVE
    keepalive_expiry: float = DEFAULT_KEEPALIVE_EXPIRY
    user_agent: str = USER_AGENT

    def __post_init__(self) -> None:
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout!r}")
        if self.ipv4_only and self.ipv6_only:
            raise ValueError("ipv4_only and ipv6_only are mutually exclusive")
