"""Resilience components shared by the HTTP client."""

from harvester.resilience.rate_limiter import RequestSpacer
from harvester.resilience.retry_policy import RetryPolicy

__all__ = [
    "RequestSpacer",
    "RetryPolicy",
]
