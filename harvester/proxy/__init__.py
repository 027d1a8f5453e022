"""Proxy pool: session rotation, advisory validation and traffic counters."""

from harvester.proxy.manager import ProxyPoolManager, parse_proxy_url
from harvester.proxy.types import (
    NO_PROXY,
    ProxyEndpoint,
    ProxyHealth,
    ProxyRequestConfig,
    ProxyStatusSnapshot,
)

__all__ = [
    "NO_PROXY",
    "ProxyEndpoint",
    "ProxyHealth",
    "ProxyPoolManager",
    "ProxyRequestConfig",
    "ProxyStatusSnapshot",
    "parse_proxy_url",
]
