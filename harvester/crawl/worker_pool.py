"""Bounded-concurrency worker pool for per-item fetches.

``concurrency`` asyncio workers share one index over the item list. Each loops
"claim next index → run fetch_one → record outcome" until the index is
exhausted. Claiming is a plain read-and-increment with no await in between,
which is atomic under the single event loop.

A failing item is recorded as a failure and never aborts the pool. Completion
order is unordered; ``results`` is index-aligned with the input.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

I = TypeVar("I")
R = TypeVar("R")


@dataclass
class ItemOutcome(Generic[I, R]):
    index: int
    item: I
    success: bool
    result: R | None = None
    error: str | None = None


@dataclass
class PoolProgress:
    completed: int
    total: int
    successful: int
    failed: int


@dataclass
class PoolResult(Generic[I, R]):
    results: list[ItemOutcome[I, R]] = field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0
    failed_items: list[I] = field(default_factory=list)
    max_in_flight: int = 0


class BoundedWorkerPool:
    """Runs ``fetch_one`` over items with at most ``concurrency`` in flight.

    Parameters
    ----------
    concurrency:
        Number of workers.
    progress_every:
        Report progress every N completions (and always at exhaustion).
    on_progress:
        Optional callback receiving ``PoolProgress``.
    on_outcome:
        Optional callback receiving each ``ItemOutcome`` as it completes.
    """

    def __init__(
        self,
        concurrency: int,
        *,
        progress_every: int = 100,
        on_progress: Callable[[PoolProgress], None] | None = None,
        on_outcome: Callable[[ItemOutcome], None] | None = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._progress_every = max(1, progress_every)
        self._on_progress = on_progress
        self._on_outcome = on_outcome

    async def run_all(
        self,
        items: Sequence[I],
        fetch_one: Callable[[I], Awaitable[R]],
    ) -> PoolResult[I, R]:
        total = len(items)
        outcomes: list[ItemOutcome[I, R] | None] = [None] * total
        state = {"next": 0, "completed": 0, "successful": 0, "failed": 0, "in_flight": 0, "max": 0}

        async def _worker(worker_id: int) -> None:
            while True:
                index = state["next"]
                if index >= total:
                    return
                state["next"] = index + 1

                item = items[index]
                state["in_flight"] += 1
                state["max"] = max(state["max"], state["in_flight"])
                try:
                    result = await fetch_one(item)
                    outcome = ItemOutcome(index=index, item=item, success=True, result=result)
                    state["successful"] += 1
                except Exception as exc:
                    logger.warning("Worker %d: item %d failed: %s", worker_id, index, exc)
                    outcome = ItemOutcome(
                        index=index, item=item, success=False, error=str(exc) or type(exc).__name__
                    )
                    state["failed"] += 1
                finally:
                    state["in_flight"] -= 1

                outcomes[index] = outcome
                state["completed"] += 1
                if self._on_outcome is not None:
                    self._on_outcome(outcome)
                if state["completed"] % self._progress_every == 0 or state["completed"] == total:
                    self._report(state["completed"], total, state["successful"], state["failed"])

        workers = min(self._concurrency, total)
        logger.debug("Worker pool: %d items, %d workers", total, workers)
        await asyncio.gather(*(_worker(i) for i in range(workers)))
        if total == 0:
            self._report(0, 0, 0, 0)

        results = [outcome for outcome in outcomes if outcome is not None]
        return PoolResult(
            results=results,
            success_count=state["successful"],
            failure_count=state["failed"],
            failed_items=[o.item for o in results if not o.success],
            max_in_flight=state["max"],
        )

    def _report(self, completed: int, total: int, successful: int, failed: int) -> None:
        logger.info(
            "Progress: %d/%d (%d ok, %d failed)",
            completed,
            total,
            successful,
            failed,
        )
        if self._on_progress is not None:
            self._on_progress(
                PoolProgress(completed=completed, total=total, successful=successful, failed=failed)
            )


async def run_all(
    items: Sequence[I],
    fetch_one: Callable[[I], Awaitable[R]],
    concurrency: int,
    *,
    on_progress: Callable[[PoolProgress], None] | None = None,
    progress_every: int = 100,
) -> PoolResult[I, R]:
    """Convenience wrapper around ``BoundedWorkerPool.run_all``."""
    pool = BoundedWorkerPool(concurrency, progress_every=progress_every, on_progress=on_progress)
    return await pool.run_all(items, fetch_one)
