"""Shared test fixtures for the harvester test suite."""

from __future__ import annotations

import os

import pytest

from harvester.config.settings import HarvesterSettings
from harvester.monitoring.activity_log import ActivityLog
from harvester.monitoring.metrics import MetricsCollector
from tests.helpers import FakeClock, InMemoryStore


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep HARVESTER_* variables from the host environment out of tests."""
    for key in list(os.environ):
        if key.startswith("HARVESTER_"):
            monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> HarvesterSettings:
    return HarvesterSettings(
        activity_db_path=str(tmp_path / "activities.db"),
        store_db_path=str(tmp_path / "listings.db"),
        source_policies_path=str(tmp_path / "sources.yaml"),
        proxy_endpoints=[],
    )


@pytest.fixture
def activity_log(tmp_path) -> ActivityLog:
    return ActivityLog(str(tmp_path / "activities.db"), max_entries=1000)


@pytest.fixture
def metrics(activity_log: ActivityLog) -> MetricsCollector:
    return MetricsCollector(activity_log)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()
