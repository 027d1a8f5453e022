"""Proxy data models for the proxy pool manager."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from urllib.parse import quote


class ProxyHealth(str, Enum):
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class ProxyEndpoint:
    """A single upstream proxy with health and rotation tracking.

    Owned by ``ProxyPoolManager``; callers only ever see copies.
    """

    host: str
    port: int
    scheme: str = "http"  # http, https, socks5
    username: str | None = None
    password: str | None = None
    health: ProxyHealth = ProxyHealth.UNKNOWN
    last_validated_at: datetime | None = None
    last_latency_ms: float | None = None
    last_error: str | None = None
    rotation_count: int = 0

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def url(self, session_id: str | None = None) -> str:
        """Build the proxy URL, tagging the password with a sticky session id."""
        if self.username is None:
            return f"{self.scheme}://{self.address}"
        password = self.password or ""
        if session_id:
            password = f"{password}_session-{session_id}"
        return f"{self.scheme}://{quote(self.username, safe='')}:{quote(password, safe='')}@{self.address}"


@dataclass(frozen=True)
class ProxyRequestConfig:
    """What the HTTP client attaches to the next outbound request."""

    url: str | None = None
    host: str | None = None
    session_id: str | None = None

    @property
    def enabled(self) -> bool:
        return self.url is not None


# Sentinel meaning "send the request directly"
NO_PROXY = ProxyRequestConfig()


@dataclass(frozen=True)
class ProxyErrorRecord:
    timestamp: datetime
    message: str
    url: str | None = None


@dataclass
class ProxyStatusSnapshot:
    """Read-only projection of the pool state plus cumulative counters."""

    enabled: bool
    health: str  # unknown / healthy / degraded / unhealthy
    endpoint_count: int
    current_endpoint: ProxyEndpoint | None
    session_id: str | None
    rotation_count: int
    requests_since_rotation: int
    last_validated_at: datetime | None
    total_requests: int
    successful_requests: int
    failed_requests: int
    success_rate: float
    average_response_time_ms: float
    recent_errors: list[ProxyErrorRecord] = field(default_factory=list)
