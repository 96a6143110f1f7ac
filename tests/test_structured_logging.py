import json
import logging

from specsync.logging import JSONFormatter, StructuredLogger, configure_logging, get_logger


def _json_lines(out: str) -> list[dict]:
    return [json.loads(line) for line in out.strip().split("\n") if line]


def test_structured_logger_json_format(capsys):
    logger = StructuredLogger(name="test", json_logging=True, level="INFO")
    logger.log_operation("test_operation", param1="value1", param2=42)

    [log_data] = _json_lines(capsys.readouterr().err)
    assert log_data["level"] == "INFO"
    assert log_data["operation"] == "test_operation"
    assert log_data["param1"] == "value1"
    assert log_data["param2"] == 42
    assert "timestamp" in log_data


def test_structured_logger_regular_format(capsys):
    logger = StructuredLogger(name="test", json_logging=False, level="INFO")
    logger.log_operation("test_operation", param1="value1")

    out = capsys.readouterr().err
    assert "Operation: test_operation" in out
    assert "INFO" in out


def test_link_action_carries_spec_and_issue(capsys):
    logger = StructuredLogger(name="test", json_logging=True, level="INFO")
    logger.log_link_action("cleared", "spec-1", 123, reason="issue not found", dry_run=True)

    [log_data] = _json_lines(capsys.readouterr().err)
    assert log_data["level"] == "WARNING"
    assert log_data["operation"] == "link_cleared"
    assert log_data["spec_id"] == "spec-1"
    assert log_data["issue_number"] == 123
    assert log_data["dry_run"] is True
    assert log_data["message"] == "link cleared spec-1 #123 (issue not found) [DRY]"


def test_repeated_json_entries_are_collapsed(capsys):
    logger = StructuredLogger(name="test", json_logging=True, level="INFO")
    logger.log_operation("noisy", n=1)
    logger.log_operation("noisy", n=1)
    logger.log_operation("noisy", n=2)
    assert len(_json_lines(capsys.readouterr().err)) == 2


def test_level_filters_debug(capsys):
    logger = StructuredLogger(name="test", json_logging=True, level="WARNING")
    logger.info("hidden")
    logger.warning("shown", spec_id="abc")
    [log_data] = _json_lines(capsys.readouterr().err)
    assert log_data["message"] == "shown"
    assert log_data["spec_id"] == "abc"


def test_timed_operation_context_manager(capsys):
    logger = StructuredLogger(name="test", json_logging=True, level="INFO")

    with logger.timed_operation("import_directory", dry_run=True):
        pass

    start_log, perf_log = _json_lines(capsys.readouterr().err)
    assert start_log["operation"] == "import_directory_start"
    assert start_log["dry_run"] is True
    assert perf_log["operation"] == "import_directory"
    assert "duration_ms" in perf_log


def test_json_formatter_orders_known_fields_first():
    record = logging.LogRecord("specsync", logging.INFO, __file__, 1, "msg", None, None)
    record.extra_field = "x"
    record.spec_id = "abc"
    record.operation = "op"
    keys = list(json.loads(JSONFormatter().format(record)))
    assert keys[:6] == ["timestamp", "level", "logger", "message", "operation", "spec_id"]
    assert keys[-1] == "extra_field"


def test_configure_logging_replaces_global():
    configured = configure_logging(json_logging=True, level="DEBUG")
    assert get_logger() is configured
