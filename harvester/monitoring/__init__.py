"""Monitoring: activity log, metrics, health classification and the watchdog."""

from harvester.monitoring.activity_log import Activity, ActivityLog, ActivityStatus, ActivityType
from harvester.monitoring.health import HealthStatus, ScraperStatus, calculate_health_status
from harvester.monitoring.metrics import MetricsCollector, ScraperMetrics
from harvester.monitoring.watchdog import (
    Watchdog,
    WatchdogCheckResult,
    WatchdogConfig,
    WatchdogConfigUpdate,
)

__all__ = [
    "Activity",
    "ActivityLog",
    "ActivityStatus",
    "ActivityType",
    "HealthStatus",
    "MetricsCollector",
    "ScraperMetrics",
    "ScraperStatus",
    "Watchdog",
    "WatchdogCheckResult",
    "WatchdogConfig",
    "WatchdogConfigUpdate",
    "calculate_health_status",
]
