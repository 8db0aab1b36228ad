"""
Tests for the logging configuration.
"""

import json
import logging
import os
import sys
import time

from islet.src.infrastructure.logging.logging_config import (
    JSONFormatter,
    cleanup_old_logs,
    get_performance_logger,
    log_performance,
    setup_logging,
    setup_logging_from_settings,
)


def _make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="islet.test", level=logging.INFO, pathname=__file__, lineno=10,
        msg="hello %s", args=("world",), exc_info=None, func="test_func",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(_make_record()))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "islet.test"
        assert entry["message"] == "hello world"
        assert entry["function"] == "test_func"
        assert entry["line"] == 10
        assert "timestamp" in entry

    def test_extra_fields_included(self):
        entry = json.loads(JSONFormatter().format(
            _make_record(operation="processing", metadata={"session_id": "s1"})
        ))
        assert entry["operation"] == "processing"
        assert entry["metadata"] == {"session_id": "s1"}
        assert "msg" not in entry

    def test_exception_included(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _make_record()
            record.exc_info = sys.exc_info()
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad value" in entry["exception"]


class TestCleanupOldLogs:

    def test_only_old_rotated_logs_removed(self, tmp_path):
        old_time = time.time() - 20 * 86400
        old_main = tmp_path / "islet.log.2024-01-01"
        old_errors = tmp_path / "islet-errors.log.2024-01-01"
        recent = tmp_path / "islet.log.2024-05-01"
        current = tmp_path / "islet.log"
        other = tmp_path / "notes.txt"
        for path in (old_main, old_errors, recent, current, other):
            path.write_text("x", encoding="utf-8")
        for path in (old_main, old_errors, current, other):
            os.utime(path, (old_time, old_time))

        assert cleanup_old_logs(tmp_path, retention_days=10) == 2
        assert not old_main.exists()
        assert not old_errors.exists()
        assert recent.exists()
        assert current.exists()
        assert other.exists()


class TestSetupLogging:

    def test_creates_handlers_and_files(self, tmp_path, restore_root_logger):
        setup_logging(debug=True, log_dir=str(tmp_path / "logs"), retention_days=5)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 3
        assert logging.getLogger("islet").level == logging.DEBUG

        logging.getLogger("islet.test").error("something broke")
        for handler in root.handlers:
            handler.flush()

        main_lines = (tmp_path / "logs" / "islet.log").read_text(encoding="utf-8").splitlines()
        error_lines = (tmp_path / "logs" / "islet-errors.log").read_text(encoding="utf-8").splitlines()
        assert any(json.loads(line)["message"] == "something broke" for line in main_lines)
        assert [json.loads(line)["message"] for line in error_lines] == ["something broke"]

    def test_repeated_setup_replaces_handlers(self, tmp_path, restore_root_logger):
        setup_logging(log_dir=str(tmp_path))
        setup_logging(log_dir=str(tmp_path))
        root = logging.getLogger()
        assert len(root.handlers) == 3
        assert root.level == logging.INFO

    def test_setup_from_settings(self, tmp_path, settings_manager, restore_root_logger):
        settings_manager.set('advanced.log_level', 'debug')
        settings_manager.set('advanced.log_location', str(tmp_path / "custom"))
        setup_logging_from_settings(settings_manager)
        assert logging.getLogger().level == logging.DEBUG
        assert (tmp_path / "custom" / "islet.log").exists()


class TestPerformanceLogging:

    def test_performance_logger_name(self):
        assert get_performance_logger().name == "islet.performance"

    def test_log_performance_extra(self, caplog):
        with caplog.at_level(logging.INFO, logger="islet.performance"):
            log_performance("processing", 1.23456, {"session_id": "s1"})
        record = caplog.records[-1]
        assert record.operation == "processing"
        assert record.duration_ms == 1234.56
        assert record.metadata == {"session_id": "s1"}
        assert "processing took 1.235s" in record.getMessage()
