"""
Unit Tests - Logging Configuration
"""
import io
import json
import logging

import pytest
import structlog

from src.config.logging import configure_logging
from src.main import build_parser


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def json_lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


class TestConfigureLogging:

    def test_json_events(self, restore_logging):
        stream = io.StringIO()
        configure_logging("INFO", "json", stream=stream)

        structlog.get_logger("warehouse.test").info("Loaded table", table="dim_customer", rows=3)

        event = next(line for line in json_lines(stream) if line["event"] == "Loaded table")
        assert event["table"] == "dim_customer"
        assert event["rows"] == 3
        assert event["level"] == "info"
        assert event["logger"] == "warehouse.test"

    def test_stdlib_records_share_the_renderer(self, restore_logging):
        stream = io.StringIO()
        configure_logging("INFO", "json", stream=stream)

        logging.getLogger("prefect.flow_runs").warning("retrying task")

        events = [line["event"] for line in json_lines(stream)]
        assert "retrying task" in events

    def test_level_filters_events(self, restore_logging):
        stream = io.StringIO()
        configure_logging("WARNING", "json", stream=stream)

        logger = structlog.get_logger("warehouse.test")
        logger.info("hidden")
        logger.warning("shown")

        events = [line["event"] for line in json_lines(stream)]
        assert events == ["shown"]

    def test_quiet_libraries(self, restore_logging):
        configure_logging("DEBUG", "text", stream=io.StringIO())

        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_unknown_format(self, restore_logging):
        with pytest.raises(ValueError):
            configure_logging("INFO", "xml", stream=io.StringIO())

    def test_cli_log_format(self):
        args = build_parser().parse_args(["--log-format", "text"])
        assert args.log_format == "text"
