"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import json
import logging
from pathlib import Path

import pytest

from quicknote_store.observability import (
    PACKAGE_LOGGER,
    MetricsCollector,
    configure_logging,
    metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    @pytest.fixture
    def metrics_collector(self, tmp_path):
        return MetricsCollector(metrics_file=tmp_path / "metrics.json")

    def test_record_successful_operation(self, metrics_collector):
        metrics_collector.record_operation("export_to_archive", 100.0, True)

        data = metrics_collector.get_metrics()
        assert data["export_to_archive"]["count"] == 1
        assert data["export_to_archive"]["success_count"] == 1
        assert data["export_to_archive"]["error_count"] == 0
        assert data["export_to_archive"]["avg_duration_ms"] == 100.0

    def test_record_failed_operation(self, metrics_collector):
        metrics_collector.record_operation("import_from_archive", 50.0, False, "bad zip")

        data = metrics_collector.get_metrics()["import_from_archive"]
        assert data["error_count"] == 1
        assert data["last_error"] == "bad zip"
        assert data["last_error_time"] is not None

    def test_min_max_durations(self, metrics_collector):
        for duration in (30.0, 10.0, 20.0):
            metrics_collector.record_operation("op", duration, True)
        data = metrics_collector.get_metrics()["op"]
        assert data["min_duration_ms"] == 10.0
        assert data["max_duration_ms"] == 30.0
        assert data["avg_duration_ms"] == 20.0

    def test_reset(self, metrics_collector):
        metrics_collector.record_operation("op", 1.0, True)
        metrics_collector.reset()
        assert metrics_collector.get_metrics() == {}

    def test_save_metrics(self, metrics_collector, tmp_path):
        metrics_collector.record_operation("op", 1.0, True)
        assert metrics_collector.save_metrics() is True
        saved = json.loads((tmp_path / "metrics.json").read_text())
        assert saved["operations"]["op"]["count"] == 1

    def test_save_without_file(self):
        assert MetricsCollector().save_metrics() is False


class TestTracing:
    """Tests for timed_operation and traced."""

    def setup_method(self):
        metrics.reset()

    def test_timed_operation_records_success(self):
        with timed_operation("unit_op", path="x.zip") as op:
            op["created"] = 2
        assert metrics.get_metrics()["unit_op"]["success_count"] == 1

    def test_timed_operation_records_failure(self):
        with pytest.raises(RuntimeError):
            with timed_operation("failing_op"):
                raise RuntimeError("boom")
        data = metrics.get_metrics()["failing_op"]
        assert data["error_count"] == 1
        assert data["last_error"] == "boom"

    def test_traced_decorator(self):
        @traced("decorated")
        def work(path=None):
            return [1, 2, 3]

        assert work(path="a") == [1, 2, 3]
        assert metrics.get_metrics()["decorated"]["count"] == 1
        assert metrics.get_metrics()["decorated"]["items_processed"] == 3

    def test_import_result_items_counted(self, importer, tmp_path):
        path = tmp_path / "notes.json"
        path.write_text(
            json.dumps([{"id": "a", "title": "A", "content": ""}, {"id": "b", "title": "B"}]),
            encoding="utf-8",
        )
        result = importer.import_from_json(path)
        assert (result.created, result.skipped) == (1, 1)
        data = metrics.get_metrics()["import_from_json"]
        assert data["items_processed"] == 2

    def test_traced_defaults_to_function_name(self):
        @traced()
        def named_operation():
            return None

        named_operation()
        assert "named_operation" in metrics.get_metrics()


class TestConfigureLogging:
    """Tests for file logging setup."""

    @pytest.fixture(autouse=True)
    def restore_handlers(self):
        package_logger = logging.getLogger(PACKAGE_LOGGER)
        handlers = list(package_logger.handlers)
        level = package_logger.level
        yield
        for handler in package_logger.handlers:
            if handler not in handlers:
                handler.close()
        package_logger.handlers = handlers
        package_logger.setLevel(level)

    def test_creates_log_file(self, tmp_path):
        log_dir = configure_logging(log_dir=tmp_path / "logs", console=False)
        logging.getLogger("quicknote_store.storage.note_store").info("hello from the store")
        for handler in logging.getLogger(PACKAGE_LOGGER).handlers:
            handler.flush()

        log_file = Path(log_dir) / "quicknote.log"
        assert log_file.exists()
        assert "hello from the store" in log_file.read_text(encoding="utf-8")
