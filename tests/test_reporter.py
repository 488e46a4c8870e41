"""Tests for hearing_ingest.observability.reporter."""

import logging
from unittest.mock import MagicMock

from hearing_ingest.observability.reporter import RunReporter
from hearing_ingest.storage.schema import RunStatus
from hearing_ingest.utils.errors import StorageError


class TestRunReporter:
    def test_start_run_creates_row_and_logs(self, job_runs):
        reporter = RunReporter(job_runs, "MI", "house")

        run_id = reporter.start_run("worker-7")

        assert job_runs.get_run_summary(run_id).status == "running"
        logs = job_runs.get_logs(run_id)
        assert logs[0][0] == "INFO"
        assert "MI/house" in logs[0][1]
        assert "worker-7" in logs[0][1]

    def test_counters_written_through(self, job_runs):
        reporter = RunReporter(job_runs, "MI", "house")
        run_id = reporter.start_run("worker-1")

        reporter.increment_discovered(3)
        reporter.increment_processed()
        reporter.increment_failed()
        reporter.increment_skipped()

        summary = job_runs.get_run_summary(run_id)
        assert (summary.found, summary.ok, summary.fail) == (3, 1, 1)
        assert reporter.skipped == 1

    def test_finish_completed(self, job_runs):
        reporter = RunReporter(job_runs, "MI", "house")
        run_id = reporter.start_run("worker-1")
        reporter.increment_processed()

        assert reporter.finish_run() is RunStatus.COMPLETED
        assert job_runs.get_run_summary(run_id).status == "completed"

    def test_finish_with_item_failures(self, job_runs):
        reporter = RunReporter(job_runs, "MI", "house")
        run_id = reporter.start_run("worker-1")
        reporter.increment_processed()
        reporter.increment_failed()

        assert reporter.finish_run() is RunStatus.COMPLETED_WITH_ERRORS
        assert job_runs.get_run_summary(run_id).status == "completed_with_errors"

    def test_finish_with_error(self, job_runs):
        reporter = RunReporter(job_runs, "MI", "house")
        run_id = reporter.start_run("worker-1")

        status = reporter.finish_run(RuntimeError("discovery exploded"))

        assert status is RunStatus.FAILED
        summary = job_runs.get_run_summary(run_id)
        assert summary.status == "failed"
        assert summary.error_summary == "discovery exploded"

    def test_log_persistence_failure_is_not_fatal(self, caplog):
        store = MagicMock()
        store.create_run.return_value = "run-1"
        store.insert_log.side_effect = StorageError("insert failed")
        reporter = RunReporter(store, "MI", "senate")

        with caplog.at_level(logging.WARNING):
            reporter.start_run("worker-1")
            reporter.log("ERROR", "item failed")

        assert store.insert_log.call_count == 2
        assert any("Could not persist" in r.message for r in caplog.records)

    def test_log_before_start_only_logs(self):
        store = MagicMock()
        reporter = RunReporter(store, "MI", "senate")

        reporter.log("WARN", "early")

        store.insert_log.assert_not_called()
