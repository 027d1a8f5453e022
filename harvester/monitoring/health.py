"""Scraper status enums and the health classification function."""

from __future__ import annotations

from enum import Enum

DEFAULT_UNHEALTHY_STREAK = 10


class ScraperStatus(str, Enum):
    """Lifecycle status of a scraper source."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


class HealthStatus(str, Enum):
    """Coarse health classification."""

    HEALTHY = "healthy"  # < 5% error rate
    DEGRADED = "degraded"  # 5-20% error rate
    UNHEALTHY = "unhealthy"  # > 20% error rate or a long error streak
    UNKNOWN = "unknown"  # No data yet


def calculate_health_status(
    request_volume: int,
    total_errors: int,
    consecutive_errors: int,
    unhealthy_streak: int = DEFAULT_UNHEALTHY_STREAK,
) -> HealthStatus:
    """Classify health from request volume, total errors and the current error streak.

    A streak of ``unhealthy_streak`` consecutive errors is unhealthy no matter
    how good the lifetime error rate looks.
    """
    if consecutive_errors >= unhealthy_streak:
        return HealthStatus.UNHEALTHY

    if request_volume <= 0:
        return HealthStatus.UNKNOWN

    error_rate = total_errors / request_volume

    if error_rate < 0.05:
        return HealthStatus.HEALTHY
    if error_rate < 0.20:
        return HealthStatus.DEGRADED
    return HealthStatus.UNHEALTHY
