"""Outbound HTTP: the resilient client every crawl goes through."""

from harvester.http.client import HttpClientConfig, ResilientHttpClient, browser_headers

__all__ = [
    "HttpClientConfig",
    "ResilientHttpClient",
    "browser_headers",
]
