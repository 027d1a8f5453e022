"""OS-process supervision for scraper runs.

Each source crawls in its own child process (``python -m harvester crawl
<source>``) so sources never share in-process state. The supervisor keeps one
handle per source, forwards the child's output to the logger and reaps exited
children lazily on every status query. Stopping is a hard SIGTERM: in-flight
requests in the child are abandoned.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from harvester.middleware.error_handler import SourceNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class CrawlOptions:
    """Command-line options forwarded to the child crawl."""

    categories: list[str] = field(default_factory=list)
    max_pages: int | None = None
    resume: bool = False

    def to_args(self) -> list[str]:
        args: list[str] = []
        for category in self.categories:
            args += ["--category", category]
        if self.max_pages is not None:
            args += ["--max-pages", str(self.max_pages)]
        if self.resume:
            args.append("--resume")
        return args


@dataclass
class SupervisorResult:
    success: bool
    message: str
    process_id: int | None = None


@dataclass
class ProcessStatus:
    source: str
    is_running: bool
    process_id: int | None = None
    started_at: datetime | None = None
    exit_code: int | None = None


@dataclass
class _ManagedProcess:
    process: asyncio.subprocess.Process
    started_at: datetime
    output_task: asyncio.Task[None] | None = None


class ProcessSupervisor:
    """Starts, stops and reports on per-source crawl processes.

    Args:
        known_sources: Names that may be started. ``None`` accepts any name.
        python_executable: Interpreter used for child processes.
        stop_timeout_seconds: Grace period after SIGTERM before SIGKILL.
    """

    def __init__(
        self,
        known_sources: Iterable[str] | None = None,
        *,
        python_executable: str = sys.executable,
        stop_timeout_seconds: float = 10.0,
        env: dict[str, str] | None = None,
    ) -> None:
        self._known = set(known_sources) if known_sources is not None else None
        self._python = python_executable
        self._stop_timeout = stop_timeout_seconds
        self._env = env
        self._processes: dict[str, _ManagedProcess] = {}
        self._exit_codes: dict[str, int] = {}

    def command_for(self, source: str, options: CrawlOptions | None = None) -> list[str]:
        return [self._python, "-m", "harvester", "crawl", source, *(options or CrawlOptions()).to_args()]

    async def start(self, source: str, options: CrawlOptions | None = None) -> SupervisorResult:
        """Spawn the crawl process. A source that is already running is rejected."""
        if self._known is not None and source not in self._known:
            raise SourceNotFoundError(f"Unknown source '{source}'", source=source)

        if self.status(source).is_running:
            managed = self._processes[source]
            return SupervisorResult(
                success=False,
                message=f"Scraper '{source}' is already running",
                process_id=managed.process.pid,
            )

        command = self.command_for(source, options)
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env={**os.environ, **(self._env or {})},
        )
        managed = _ManagedProcess(process=process, started_at=datetime.now(timezone.utc))
        managed.output_task = asyncio.create_task(self._forward_output(source, process))
        self._processes[source] = managed
        self._exit_codes.pop(source, None)

        logger.info("Started scraper %s (pid %d)", source, process.pid, extra={"source": source})
        return SupervisorResult(
            success=True,
            message=f"Scraper '{source}' started",
            process_id=process.pid,
        )

    async def stop(self, source: str) -> SupervisorResult:
        """Terminate the source's process (SIGTERM, then SIGKILL after the grace period)."""
        if not self.status(source).is_running:
            return SupervisorResult(success=False, message=f"Scraper '{source}' is not running")

        managed = self._processes[source]
        process = managed.process
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=self._stop_timeout)
        except asyncio.TimeoutError:
            logger.warning("Scraper %s ignored SIGTERM, killing", source, extra={"source": source})
            process.kill()
            await process.wait()

        self._reap(source)
        logger.info("Stopped scraper %s", source, extra={"source": source})
        return SupervisorResult(
            success=True,
            message=f"Scraper '{source}' stopped",
            process_id=process.pid,
        )

    def status(self, source: str) -> ProcessStatus:
        managed = self._processes.get(source)
        if managed is not None and managed.process.returncode is not None:
            self._reap(source)
            managed = None

        if managed is None:
            return ProcessStatus(
                source=source,
                is_running=False,
                exit_code=self._exit_codes.get(source),
            )
        return ProcessStatus(
            source=source,
            is_running=True,
            process_id=managed.process.pid,
            started_at=managed.started_at,
        )

    def running_sources(self) -> list[str]:
        return [source for source in list(self._processes) if self.status(source).is_running]

    async def shutdown(self) -> None:
        """Stop every running child."""
        for source in self.running_sources():
            await self.stop(source)

    def _reap(self, source: str) -> None:
        managed = self._processes.pop(source, None)
        if managed is None:
            return
        if managed.process.returncode is not None:
            self._exit_codes[source] = managed.process.returncode
            logger.info(
                "Scraper %s exited with code %d",
                source,
                managed.process.returncode,
                extra={"source": source},
            )

    async def _forward_output(self, source: str, process: asyncio.subprocess.Process) -> None:
        if process.stdout is None:
            return
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.info("[%s] %s", source, line, extra={"source": source})
