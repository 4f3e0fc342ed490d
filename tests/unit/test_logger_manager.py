"""
Unit tests for relay_logging/logger_manager.py.

Tests cover the JSON formatter, formatter selection in
setup_module_logger, and the event-flow trace records written by
log_event_flow.
"""

from __future__ import annotations

import json
import logging

from relay_logging.logger_manager import (
    HumanReadableFormatter,
    JSONFormatter,
    get_event_flow_logger,
    log_event_flow,
    setup_module_logger,
)


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.lines: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(self.format(record))


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("relay", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_base_fields(self):
        doc = json.loads(JSONFormatter().format(_record("hello")))
        assert doc["message"] == "hello"
        assert doc["level"] == "INFO"
        assert doc["logger"] == "relay"
        assert "timestamp" in doc

    def test_trace_fields_included(self):
        record = _record("buy event", stage="ENQUEUED", signature="sig", data={"amount_sol": 5})
        doc = json.loads(JSONFormatter().format(record))
        assert doc["stage"] == "ENQUEUED"
        assert doc["signature"] == "sig"
        assert doc["data"] == {"amount_sol": 5}

    def test_absent_fields_omitted(self):
        doc = json.loads(JSONFormatter().format(_record("plain")))
        assert "stage" not in doc
        assert "next_stage" not in doc


class TestSetupModuleLogger:
    def test_json_logger_uses_json_formatter_without_console(self):
        logger = setup_module_logger(
            "json_formatter_test", "json_formatter_test.log", use_json_formatter=True
        )
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.propagate is False

    def test_default_is_human_readable(self):
        logger = setup_module_logger("human_formatter_test", "human_formatter_test.log", console=False)
        assert isinstance(logger.handlers[0].formatter, HumanReadableFormatter)

    def test_cached(self):
        a = setup_module_logger("cached_logger_test", "cached_logger_test.log", console=False)
        b = setup_module_logger("cached_logger_test", "cached_logger_test.log", console=False)
        assert a is b


class TestLogEventFlow:
    def test_trace_record_is_json_with_hop_fields(self):
        logger = get_event_flow_logger()
        handler = _ListHandler()
        handler.setFormatter(JSONFormatter())
        logger.addHandler(handler)
        try:
            log_event_flow(
                "ENQUEUED",
                "upstream",
                "buy event",
                {"mint": "Mint111pump"},
                signature="5sig",
                next_stage="broadcaster",
            )
        finally:
            logger.removeHandler(handler)

        doc = json.loads(handler.lines[-1])
        assert doc["message"] == "buy event"
        assert doc["stage"] == "ENQUEUED"
        assert doc["source_module"] == "upstream"
        assert doc["signature"] == "5sig"
        assert doc["data"] == {"mint": "Mint111pump"}
        assert doc["next_stage"] == "broadcaster"

    def test_event_flow_logger_writes_json(self):
        logger = get_event_flow_logger()
        assert any(isinstance(h.formatter, JSONFormatter) for h in logger.handlers)
