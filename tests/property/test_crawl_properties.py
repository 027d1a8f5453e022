"""Property tests for the crawl loop and the worker pool.

Validates at-most-once persistence per run, termination within the empty/failed
page streak, and the worker pool's concurrency bound and completeness.
"""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from harvester.crawl.loop import CrawlLoop
from harvester.crawl.seen_ids import SeenIdSet
from harvester.crawl.worker_pool import BoundedWorkerPool
from tests.helpers import FAIL, InMemoryStore, ScriptedSource, item_ids, items, page_scripts


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

# A page is either a failed fetch or a list of ids
page_or_failure = st.one_of(st.just(FAIL), st.lists(item_ids, max_size=6))
mixed_scripts = st.lists(page_or_failure, min_size=0, max_size=12)
streak_limits = st.integers(min_value=1, max_value=6)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _pages(script: list) -> dict[int, object]:
    return {
        number: page if page == FAIL else items(*page)
        for number, page in enumerate(script, start=1)
    }


# ---------------------------------------------------------------------------
# Deduplication
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(script=page_scripts)
def test_each_id_persisted_at_most_once(script: list[list[str]]) -> None:
    """No identity is written twice in one run; every fetched identity is written once."""
    source = ScriptedSource(_pages(script))
    store = InMemoryStore()

    _run_async(CrawlLoop(source, object(), store).run("all"))

    persisted = store.persisted_ids
    assert len(persisted) == len(set(persisted))

    fetched_ids = {
        item_id
        for number in source.fetched
        for item_id in (script[number - 1] if number <= len(script) else [])
    }
    assert set(persisted) == fetched_ids


@settings(max_examples=100)
@given(keys=st.lists(item_ids, max_size=40))
def test_seen_id_set_admits_each_key_once(keys: list[str]) -> None:
    seen = SeenIdSet("jobs", "all")
    admitted = seen.filter_new_keys(keys) + seen.filter_new_keys(keys)
    assert sorted(admitted) == sorted(set(keys))
    assert len(seen) == len(set(keys))


# ---------------------------------------------------------------------------
# Liveness
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(script=mixed_scripts, max_streak=streak_limits)
def test_crawl_terminates_within_streak(script: list, max_streak: int) -> None:
    """With no page ceiling the run still ends at most ``max_streak`` pages past the script."""
    source = ScriptedSource(_pages(script))
    result = _run_async(
        CrawlLoop(source, object(), InMemoryStore(), max_consecutive_empty_pages=max_streak).run("all")
    )

    assert result.termination is not None
    assert len(source.fetched) <= len(script) + max_streak
    assert source.fetched == list(range(1, len(source.fetched) + 1))


# ---------------------------------------------------------------------------
# Worker pool
# ---------------------------------------------------------------------------


@settings(max_examples=100)
@given(
    outcomes=st.lists(st.booleans(), max_size=40),
    concurrency=st.integers(min_value=1, max_value=10),
)
def test_pool_is_bounded_and_complete(outcomes: list[bool], concurrency: int) -> None:
    """Every item gets exactly one outcome and in-flight work never exceeds the bound."""
    in_flight = 0
    peak = 0

    async def _fetch(index: int) -> int:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        in_flight -= 1
        if not outcomes[index]:
            raise RuntimeError(f"item {index} failed")
        return index

    result = _run_async(BoundedWorkerPool(concurrency).run_all(list(range(len(outcomes))), _fetch))

    assert len(result.results) == len(outcomes)
    assert [o.index for o in result.results] == list(range(len(outcomes)))
    assert result.success_count == sum(outcomes)
    assert result.failure_count == len(outcomes) - sum(outcomes)
    assert peak <= concurrency
    assert result.max_in_flight <= concurrency
