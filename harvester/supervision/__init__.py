"""Process supervision for per-source crawl processes."""

from harvester.supervision.process_supervisor import (
    CrawlOptions,
    ProcessStatus,
    ProcessSupervisor,
    SupervisorResult,
)

__all__ = [
    "CrawlOptions",
    "ProcessStatus",
    "ProcessSupervisor",
    "SupervisorResult",
]
