"""Unit tests for the shared SQLite activity log."""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

from harvester.monitoring.activity_log import ActivityLog, ActivityStatus, ActivityType


class TestWriting:
    def test_log_returns_activity(self, activity_log: ActivityLog):
        activity = activity_log.log("jobs", "error", "error", "boom", {"page": 3, "url": None})
        assert activity.type == ActivityType.ERROR
        assert activity.status == ActivityStatus.ERROR
        # None-valued details are dropped
        assert activity.details == {"page": 3}

    def test_http_request_message(self, activity_log: ActivityLog):
        activity = activity_log.log_http_request(
            "jobs",
            "https://a.example.com",
            ActivityStatus.SUCCESS,
            status_code=200,
            latency_ms=123.456,
            attempt=1,
        )
        assert "200" in activity.message
        assert activity.details["latency_ms"] == 123.5
        assert activity.details["proxy_used"] is False

    def test_parsing_warning(self, activity_log: ActivityLog):
        activity = activity_log.log_parsing(
            "jobs", "sales", 3, 9, status=ActivityStatus.WARNING, error="bad fragment"
        )
        assert activity.status == ActivityStatus.WARNING
        assert "page 3" in activity.message
        assert activity.details["items_found"] == 9

    def test_database_error_status(self, activity_log: ActivityLog):
        assert activity_log.log_database("jobs", "upsert", 10).status == ActivityStatus.SUCCESS
        failed = activity_log.log_database("jobs", "upsert", 0, error="locked")
        assert failed.status == ActivityStatus.ERROR

    def test_failed_insert_is_not_raised(self, activity_log: ActivityLog):
        with patch.object(activity_log, "_save", side_effect=sqlite3.OperationalError("locked")):
            activity = activity_log.log_error("jobs", "something broke")
        assert activity.message == "Error in jobs: something broke"
        assert activity_log.count() == 0


class TestReading:
    def test_query_newest_first(self, activity_log: ActivityLog):
        for i in range(3):
            activity_log.log_parsing("jobs", "sales", i + 1, 10)
        pages = [a.details["page"] for a in activity_log.query(source="jobs")]
        assert pages == [3, 2, 1]

    def test_filters(self, activity_log: ActivityLog):
        activity_log.log_parsing("jobs", "sales", 1, 10)
        activity_log.log_error("jobs", "boom")
        activity_log.log_error("homes", "boom")

        assert activity_log.count(source="jobs") == 2
        assert activity_log.count(type=ActivityType.ERROR) == 2
        assert activity_log.count(source="homes", status="error") == 1
        assert len(activity_log.query(source="jobs", type="parsing")) == 1

    def test_limit_and_offset(self, activity_log: ActivityLog):
        for i in range(5):
            activity_log.log_parsing("jobs", "sales", i + 1, 1)
        page = activity_log.query(limit=2, offset=1)
        assert [a.details["page"] for a in page] == [4, 3]

    def test_retention_evicts_oldest(self, tmp_path):
        log = ActivityLog(str(tmp_path / "small.db"), max_entries=5)
        for i in range(8):
            log.log_parsing("jobs", "sales", i + 1, 1)
        assert log.count() == 5
        assert [a.details["page"] for a in log.query()][-1] == 4

    def test_clear(self, activity_log: ActivityLog):
        activity_log.log_error("jobs", "boom")
        activity_log.clear()
        assert activity_log.count() == 0

    def test_visible_across_instances(self, tmp_path):
        path = str(tmp_path / "shared.db")
        writer = ActivityLog(path)
        reader = ActivityLog(path)
        writer.log_parsing("jobs", "sales", 7, 20)
        entries = reader.query(source="jobs")
        assert len(entries) == 1
        assert entries[0].details["page"] == 7
